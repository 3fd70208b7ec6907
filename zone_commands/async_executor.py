"""
Async Command Executor - For use with asyncio event loops
Use this in: task handlers, discovery, dependency-safety checks
"""
import asyncio
import logging
import os
import time
from typing import List, Optional

from prometheus_client import Counter, Histogram

from .builder import ZoneCommands
from .types import CommandResult

logger = logging.getLogger(__name__)

command_executions = Counter('zone_orchestrator_commands_total',
                             'Privileged commands executed', ['program', 'status'])
command_duration = Histogram('zone_orchestrator_command_duration_seconds',
                             'Privileged command duration', ['program'])


class AsyncCommandExecutor:
    """
    Async executor for privileged system utilities.
    All methods use native async subprocess execution. Every command is
    prefixed with the privilege wrapper (pfexec by default).
    """

    def __init__(self, privilege_prefix: Optional[List[str]] = None,
                 timeout: Optional[float] = None):
        self.commands = ZoneCommands()
        self.privilege_prefix = ['pfexec'] if privilege_prefix is None else list(privilege_prefix)
        self.timeout = timeout

    async def execute(self, cmd: List[str]) -> CommandResult:
        """Execute command and return standardized result"""
        full_cmd = self.privilege_prefix + list(cmd)
        program = cmd[0] if cmd else 'unknown'
        start_time = time.monotonic()

        try:
            proc = await asyncio.create_subprocess_exec(
                *full_cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            logger.error(f"Failed to spawn {' '.join(full_cmd)}: {e}")
            command_executions.labels(program=program, status='error').inc()
            return CommandResult(returncode=-1, stdout='', stderr=str(e), command=list(cmd))

        try:
            if self.timeout:
                stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
            else:
                stdout, stderr = await proc.communicate()
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.error(f"Command timed out after {self.timeout}s: {' '.join(full_cmd)}")
            command_executions.labels(program=program, status='timeout').inc()
            return CommandResult(returncode=-1, stdout='',
                                 stderr=f'Command timed out after {self.timeout}s',
                                 command=list(cmd))

        elapsed = time.monotonic() - start_time
        command_duration.labels(program=program).observe(elapsed)

        result = CommandResult(
            returncode=proc.returncode,
            stdout=stdout.decode('utf-8', errors='ignore'),
            stderr=stderr.decode('utf-8', errors='ignore'),
            command=list(cmd)
        )

        if result.success:
            command_executions.labels(program=program, status='success').inc()
            if elapsed > 1.0:
                logger.info(f"Slow command ({elapsed:.1f}s): {' '.join(full_cmd)}")
        else:
            command_executions.labels(program=program, status='failed').inc()
            logger.error(f"Command failed (rc={result.returncode}): {' '.join(full_cmd)}: {result.error[:200]}")

        return result

    async def execute_pipeline(self, producer: List[str], consumer: List[str]) -> CommandResult:
        """
        Run producer with its stdout piped into consumer (zfs send | zfs receive).
        The result carries the consumer's output; a failing producer fails it too.
        """
        full_producer = self.privilege_prefix + list(producer)
        full_consumer = self.privilege_prefix + list(consumer)
        command = list(producer) + ['|'] + list(consumer)
        program = consumer[0] if consumer else 'unknown'
        start_time = time.monotonic()

        read_fd, write_fd = os.pipe()
        send = None
        try:
            send = await asyncio.create_subprocess_exec(
                *full_producer, stdout=write_fd, stderr=asyncio.subprocess.PIPE)
            recv = await asyncio.create_subprocess_exec(
                *full_consumer, stdin=read_fd,
                stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE)
        except OSError as e:
            if send:
                if send.returncode is None:
                    send.kill()
                await send.wait()
            logger.error(f"Failed to spawn pipeline {' '.join(command)}: {e}")
            command_executions.labels(program=program, status='error').inc()
            return CommandResult(returncode=-1, stdout='', stderr=str(e), command=command)
        finally:
            # The children hold their own copies
            os.close(read_fd)
            os.close(write_fd)

        try:
            (_, send_err), (stdout, stderr) = await asyncio.wait_for(
                asyncio.gather(send.communicate(), recv.communicate()), timeout=self.timeout)
        except asyncio.TimeoutError:
            for proc in (send, recv):
                if proc.returncode is None:
                    proc.kill()
                await proc.wait()
            logger.error(f"Pipeline timed out after {self.timeout}s: {' '.join(command)}")
            command_executions.labels(program=program, status='timeout').inc()
            return CommandResult(returncode=-1, stdout='',
                                 stderr=f'Command timed out after {self.timeout}s',
                                 command=command)

        command_duration.labels(program=program).observe(time.monotonic() - start_time)

        returncode = recv.returncode or send.returncode
        errors = [out.decode('utf-8', errors='ignore') for out in (send_err, stderr) if out]
        result = CommandResult(
            returncode=returncode,
            stdout=stdout.decode('utf-8', errors='ignore'),
            stderr=''.join(errors),
            command=command
        )

        if result.success:
            command_executions.labels(program=program, status='success').inc()
        else:
            command_executions.labels(program=program, status='failed').inc()
            logger.error(f"Pipeline failed (rc={result.returncode}): {' '.join(command)}: {result.error[:200]}")
        return result
