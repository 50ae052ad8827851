from .base import Operation, OperationChain
from .daemon_config import DaemonConfigOperation
from .exec import CommandOperation
from .group import GroupMemberOperation
from .package import PackageOperation
from .repository import RepositoryOperation
from .service import ServiceOperation

OPERATION_REGISTRY = {
    "package": PackageOperation,
    "repository": RepositoryOperation,
    "service": ServiceOperation,
    "command": CommandOperation,
    "daemon_config": DaemonConfigOperation,
    "group_member": GroupMemberOperation,
}

__all__ = [
    "Operation",
    "OperationChain",
    "PackageOperation",
    "RepositoryOperation",
    "ServiceOperation",
    "CommandOperation",
    "DaemonConfigOperation",
    "GroupMemberOperation",
    "OPERATION_REGISTRY",
]
