# main.py (в корне backend)
#!/usr/bin/env python3
"""
Точка входа для serverhub API
"""
import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "serverhub.main:app",
        host="0.0.0.0",
        port=8000,
        reload=False
    )
