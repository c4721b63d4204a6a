from .server import Server, ServerProxy, ServerInput
from .command import CommandSpec
from .domain import Domain
from .connector import Connector, SSHTunnel
from .ssh_account import SSHAccount, SSHAccountCreate
from .user import User, UserRole

__all__ = [
    "Server", "ServerProxy", "ServerInput",
    "CommandSpec",
    "Domain",
    "Connector", "SSHTunnel",
    "SSHAccount", "SSHAccountCreate",
    "User", "UserRole",
]
