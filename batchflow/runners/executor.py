#
# Licensed to the Apache Software Foundation (ASF) under one or more
# contributor license agreements.  See the NOTICE file distributed with
# this work for additional information regarding copyright ownership.
# The ASF licenses this file to You under the Apache License, Version 2.0
# (the "License"); you may not use this file except in compliance with
# the License.  You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

"""Dispatches planned job stages to a backend in dependency order."""

# pytype: skip-file

import logging
import threading
from concurrent import futures
from typing import Callable
from typing import Dict
from typing import List
from typing import Optional

from batchflow.error import PipelineExecutionError
from batchflow.runners.planner import JobStage
from batchflow.runners.runner import Backend
from batchflow.runners.runner import JobStageHandle
from batchflow.runners.runner import PipelineResult
from batchflow.runners.runner import PipelineState

__all__ = ['StageExecutor', 'ExecutionResult']

_LOGGER = logging.getLogger(__name__)

# Seconds between checks for a cancellation request while stages run.
_POLL_INTERVAL_SECS = 0.05


class StageExecutor(object):
  """Submits every stage once all of its predecessors have succeeded.

  Stages without a dependency between them may be in flight at the same
  time, up to ``max_concurrent_stages``. When a stage fails nothing new is
  submitted; stages already running are waited for and their results kept.
  """
  def __init__(
      self,
      backend,  # type: Backend
      stages,  # type: List[JobStage]
      max_concurrent_stages=None,  # type: Optional[int]
      on_stage_complete=None  # type: Optional[Callable[[JobStage], None]]
  ):
    self._backend = backend
    self._stages = list(stages)
    self._max_concurrent_stages = max_concurrent_stages
    self._on_stage_complete = on_stage_complete

  def execute(self, cancel_event):
    # type: (threading.Event) -> str

    """Runs the stages and returns PipelineState.DONE or CANCELLED.

    Raises:
      PipelineExecutionError: if a stage failed.
    """
    pending = list(self._stages)
    handles = {}  # type: Dict[JobStage, JobStageHandle]
    running = {}  # type: Dict[futures.Future, JobStageHandle]
    completed = set()
    cancelled = set()
    failure = None

    while True:
      if failure is None and not cancel_event.is_set():
        for stage in list(pending):
          if (self._max_concurrent_stages and
              len(running) >= self._max_concurrent_stages):
            break
          if all(prev in completed for prev in stage.must_follow):
            pending.remove(stage)
            handle = self._backend.submit(
                stage, [handles[prev] for prev in stage.must_follow])
            handles[stage] = handle
            running[handle.future] = handle

      if cancel_event.is_set():
        for handle in running.values():
          if handle not in cancelled:
            _LOGGER.info('Cancelling stage %s', handle.stage.name)
            self._backend.cancel(handle)
            cancelled.add(handle)

      if not running:
        break

      done, _ = futures.wait(
          list(running),
          timeout=_POLL_INTERVAL_SECS,
          return_when=futures.FIRST_COMPLETED)
      for future in done:
        handle = running.pop(future)
        result = self._backend.wait(handle)
        if result.succeeded:
          completed.add(handle.stage)
          if self._on_stage_complete:
            self._on_stage_complete(handle.stage)
        elif handle in cancelled:
          _LOGGER.info('Stage %s was aborted', handle.stage.name)
        elif failure is None:
          failure = (handle.stage, result.error)
        else:
          _LOGGER.error(
              'Stage %s also failed: %s', handle.stage.name, result.error)

    if failure is not None:
      stage, error = failure
      raise PipelineExecutionError(
          'Job stage %s (%s) failed: %s' % (stage.name, stage.description, error),
          stage_name=stage.name) from error
    if len(completed) < len(self._stages):
      return PipelineState.CANCELLED
    return PipelineState.DONE


class ExecutionResult(PipelineResult):
  """A run executing in a background thread."""
  def __init__(self, stages, executor, on_finish=None):
    super().__init__(PipelineState.EXECUTING, stages)
    self._executor = executor
    self._on_finish = on_finish
    self._cancel_event = threading.Event()
    self._finished = threading.Event()
    self._error = None
    self._thread = threading.Thread(
        target=self._run, name='batchflow-run', daemon=True)

  def start(self):
    self._thread.start()
    return self

  def _run(self):
    try:
      self._state = self._executor.execute(self._cancel_event)
    except PipelineExecutionError as e:
      self._error = e
      self._state = PipelineState.FAILED
    except Exception as e:  # pylint: disable=broad-except
      error = PipelineExecutionError('Pipeline execution failed: %s' % e)
      error.__cause__ = e
      self._error = error
      self._state = PipelineState.FAILED
    finally:
      if self._on_finish:
        self._on_finish(self)
      self._finished.set()
    _LOGGER.info('Run finished in state %s', self._state)

  def wait_until_finish(self, duration=None):
    timeout = None if duration is None else duration / 1000.0
    if not self._finished.wait(timeout):
      return None
    if self._error is not None:
      raise self._error
    return self._state

  def cancel(self):
    """Aborts stages that have not completed; completed outputs are kept."""
    self._cancel_event.set()
    self._finished.wait()
    return self._state
