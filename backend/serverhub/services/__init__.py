# serverhub/services/__init__.py
