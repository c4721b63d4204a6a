# serverhub/models/command.py
import shlex
from pydantic import BaseModel
from typing import Any, Optional, Union


class CommandSpec(BaseModel):
    """
    Команда для удалённого выполнения.

    commands - либо готовая строка для shell, либо список пар
    ["echo", ["1"], "cat", ["/etc/issue"]]; пары склеиваются через "; ".
    """
    commands: Union[str, list[Any]]
    timeout: Optional[int] = None
    ok_exitcodes: list[int] = [0]
    hostkey_check: bool = True

    @classmethod
    def coerce(cls, value) -> "CommandSpec":
        if isinstance(value, cls):
            return value
        if isinstance(value, dict):
            return cls(**value)
        return cls(commands=value)

    def build(self) -> str:
        """Собрать строку команды с экранированием аргументов"""
        if isinstance(self.commands, str):
            return self.commands

        parts = []
        items = list(self.commands)
        i = 0
        while i < len(items):
            command = items[i]
            if not isinstance(command, str) or not command:
                raise ValueError(f"Ожидалось имя команды, получено {command!r}")
            args = []
            if i + 1 < len(items) and isinstance(items[i + 1], (list, tuple)):
                args = [str(a) for a in items[i + 1]]
                i += 1
            parts.append(" ".join([command] + [shlex.quote(a) for a in args]))
            i += 1

        if not parts:
            raise ValueError("Пустой список команд")
        return "; ".join(parts)
