# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Ordered, non-transactional write batches over a Redis pipeline.

A memory write touches the record plus several index keys. The commands
are sent together in one round trip but are not atomic: each command
succeeds or fails on its own. ``WriteBatch.execute`` reports which
commands failed and whether the failure was partial or total.
"""

import logging
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..errors import BatchWriteError

logger = logging.getLogger(__name__)


class WriteBatch:
    """Collects labelled Redis commands and executes them in order."""

    def __init__(self, redis: Redis, operation: str):
        self.operation = operation
        self._pipeline = redis.pipeline(transaction=False)
        self._labels: list[str] = []

    def __len__(self) -> int:
        return len(self._labels)

    def queue(self, label: str, command: str, *args: Any, **kwargs: Any) -> "WriteBatch":
        """Queue ``command`` (a Redis client method name) under a readable label."""
        getattr(self._pipeline, command)(*args, **kwargs)
        self._labels.append(label)
        return self

    async def execute(self) -> list[Any]:
        """
        Run every queued command.

        Returns:
            Per-command replies, in queue order

        Raises:
            BatchWriteError: partial=True when only some commands failed,
                partial=False when none were applied
        """
        try:
            replies = await self._pipeline.execute(raise_on_error=False)
        except RedisError as e:
            # The pipeline never reached the server
            raise BatchWriteError(self.operation, list(self._labels), partial=False, cause=e) from e

        errors = [(label, reply) for label, reply in zip(self._labels, replies) if isinstance(reply, Exception)]
        if not errors:
            return replies

        failed = [label for label, _ in errors]
        partial = len(errors) < len(self._labels)
        first_error = errors[0][1]
        logger.error(f"{self.operation}: {len(errors)}/{len(self._labels)} batched commands failed: {failed}")
        raise BatchWriteError(self.operation, failed, partial=partial, cause=first_error) from first_error
