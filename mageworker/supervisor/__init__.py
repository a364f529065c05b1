"""
The Supervisor package.
Manages the lifecycle of the worker subprocesses.

This package contains the Supervisor class and its helper modules, which
together handle starting, health-checking, restarting and stopping the
workers.
"""
from .models import CommandSpec, WorkerSettings
from .process import ExitStatus, ProcessHandle
from .worker import WorkerState, WorkerUnit
from .supervisor import Supervisor

__all__ = [
    'CommandSpec',
    'ExitStatus',
    'ProcessHandle',
    'Supervisor',
    'WorkerSettings',
    'WorkerState',
    'WorkerUnit',
]
