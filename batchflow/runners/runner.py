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

"""The backend boundary, backend lookup and pipeline run results."""

# pytype: skip-file

import importlib
import logging
import threading
from concurrent import futures
from typing import TYPE_CHECKING
from typing import Iterable
from typing import NamedTuple
from typing import Optional
from typing import Protocol
from typing import runtime_checkable

from batchflow.options.pipeline_options import PipelineOptions
from batchflow.options.pipeline_options import StandardOptions

if TYPE_CHECKING:
  from batchflow.runners.planner import JobStage

__all__ = [
    'Backend',
    'JobStageHandle',
    'StageResult',
    'create_backend',
    'PipelineState',
    'PipelineResult',
]

_BACKEND_MAP = {
    path.rsplit('.', maxsplit=1)[-1].lower(): path
    for path in StandardOptions.ALL_KNOWN_BACKENDS
}

_LOGGER = logging.getLogger(__name__)


class JobStageHandle(object):
  """Refers to one submitted job stage."""
  def __init__(self, stage: 'JobStage', future: futures.Future) -> None:
    self.stage = stage
    self.future = future
    self.cancel_requested = threading.Event()

  def __repr__(self):
    return '<JobStageHandle %s>' % self.stage.name


class StageResult(NamedTuple):
  """Outcome of a job stage, as returned by :meth:`Backend.wait`."""
  stage_name: str
  succeeded: bool
  error: Optional[BaseException] = None


@runtime_checkable
class Backend(Protocol):
  """What the planner and the executor need from an execution backend.

  Backends are described by their capabilities rather than by a common base
  class; anything with these methods can run a pipeline.
  """
  def supports_side_input(self) -> bool:
    """Whether whole collections can be broadcast to every partition."""
    ...

  def submit(
      self, stage: 'JobStage',
      predecessors: Iterable[JobStageHandle]) -> JobStageHandle:
    """Starts a stage whose predecessors have all completed successfully."""
    ...

  def wait(self, handle: JobStageHandle) -> StageResult:
    """Blocks until the stage has finished and reports how it went."""
    ...

  def cancel(self, handle: JobStageHandle) -> None:
    """Aborts the stage; its results are discarded if not yet committed."""
    ...

  def read(self, node_id: int) -> tuple:
    """Returns the stored records of a node computed by an earlier stage."""
    ...

  def cleanup(self) -> None:
    """Releases every stored result."""
    ...

  def enable_debug(self) -> None:
    ...


def create_backend(
    backend_name: str, options: Optional[PipelineOptions] = None) -> Backend:
  """For internal use only; no backwards-compatibility guarantees.

  Creates a backend instance from a backend class name.

  Args:
    backend_name: Name of the backend. Possible values are listed in
      _BACKEND_MAP above, or a fully qualified class name.
    options: The options the backend is configured with.

  Returns:
    A backend object.

  Raises:
    ValueError: if an invalid backend name is used.
  """

  # Get the qualified backend name by using the lower case backend name. If
  # that fails try appending the name with 'backend' and check if it matches.
  # If that also fails, use the given backend name as is.
  backend_name = _BACKEND_MAP.get(
      backend_name.lower(),
      _BACKEND_MAP.get(backend_name.lower() + 'backend', backend_name))

  if '.' in backend_name:
    module, backend = backend_name.rsplit('.', 1)
    return getattr(importlib.import_module(module), backend)(options)
  else:
    raise ValueError(
        'Unexpected backend: %s. Valid values are %s '
        'or the fully qualified name of a backend class.' %
        (backend_name, ', '.join(StandardOptions.KNOWN_BACKEND_NAMES)))


class PipelineState(object):
  """State of a pipeline, or of one run of it.

  A pipeline accepts new steps while BUILDING, invokes the planner while
  PLANNING and has stages dispatched while EXECUTING, after which it is
  BUILDING again. DONE is terminal. A run ends as DONE, FAILED or CANCELLED.
  """
  BUILDING = 'BUILDING'
  PLANNING = 'PLANNING'
  EXECUTING = 'EXECUTING'
  DONE = 'DONE'
  FAILED = 'FAILED'
  CANCELLED = 'CANCELLED'

  @classmethod
  def is_terminal(cls, state):
    return state in [cls.DONE, cls.FAILED, cls.CANCELLED]


class PipelineResult(object):
  """A :class:`PipelineResult` provides access to info about a pipeline run."""
  def __init__(self, state, stages=()):
    self._state = state
    self.stages = list(stages)

  @property
  def state(self):
    """Return the current state of the pipeline execution."""
    return self._state

  def wait_until_finish(self, duration=None):  # pylint: disable=unused-argument
    """Waits until the run finishes and returns the final status.

    Args:
      duration (int): The time to wait (in milliseconds) for the run to
        finish. If it is set to :data:`None`, it will wait indefinitely.

    Raises:
      PipelineExecutionError: if a job stage failed.

    Returns:
      The final state of the run, or :data:`None` on timeout.
    """
    if not PipelineState.is_terminal(self._state):
      raise NotImplementedError()
    return self._state

  def cancel(self):
    """Cancels the run.

    Returns:
      The final state of the run.
    """
    if not PipelineState.is_terminal(self._state):
      raise NotImplementedError()
    return self._state
