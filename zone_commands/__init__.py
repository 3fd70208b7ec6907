"""
Zone Commands Package - Clean architecture for privileged zone/network/storage operations

This package provides a unified interface for command execution with:
- Single source of truth for command construction (builder.py)
- Async executor for asyncio applications (AsyncCommandExecutor)
- Consistent error handling (CommandResult)

Usage:
    from zone_commands import AsyncCommandExecutor
    executor = AsyncCommandExecutor()
    result = await executor.execute(executor.commands.zone_boot('web01'))
    if not result.success:
        print(result.error)
"""

from .async_executor import AsyncCommandExecutor
from .builder import ZoneCommands
from .types import CommandResult

__all__ = [
    'AsyncCommandExecutor',
    'ZoneCommands',
    'CommandResult',
]

__version__ = '1.0.0'
