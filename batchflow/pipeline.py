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

"""Pipeline, the top-level batchflow object.

A pipeline owns an operator graph and builds it step by step as transforms
are applied to its collections. Nothing runs until :meth:`Pipeline.run` is
called: the pending outputs (sink writes and materializations) are then
planned into job stages, which a backend executes. Outputs computed by an
earlier run are reused, not recomputed.

Typical usage::

  # Create a pipeline object using a local backend for execution.
  with batchflow.Pipeline('DirectBackend') as p:

    # Add to the pipeline a "Create" step and a "Map" step.
    pcoll = p.create([1, 2, 3]).map(lambda x: x * x)

    # Add to the pipeline a write of the results.
    pcoll.write(TextFileTarget('/tmp/squares.txt'))

  # Exiting the with-block has run the pipeline and released its
  # intermediate results.

A pipeline moves through the states BUILDING (steps may be added),
PLANNING, EXECUTING and back to BUILDING; :meth:`Pipeline.done` makes it
DONE, after which it can no longer be extended or run.
"""

# pytype: skip-file

import logging
import threading
from typing import TYPE_CHECKING
from typing import List
from typing import Optional
from typing import Union

from batchflow import pvalue
from batchflow.error import PipelineError
from batchflow.error import PipelineStateError
from batchflow.graph import NodeKind
from batchflow.graph import OperatorGraph
from batchflow.internal.util import unique_name
from batchflow.io.sources import IntermediateSourceTarget
from batchflow.io.sources import TextFileSource
from batchflow.io.sources import TextFileTarget
from batchflow.options.pipeline_options import DebugOptions
from batchflow.options.pipeline_options import DirectOptions
from batchflow.options.pipeline_options import PipelineOptions
from batchflow.options.pipeline_options import SideInputOptions
from batchflow.options.pipeline_options import StandardOptions
from batchflow.runners import planner
from batchflow.runners.display.plan_graph import PlanGraph
from batchflow.runners.executor import ExecutionResult
from batchflow.runners.executor import StageExecutor
from batchflow.runners.runner import Backend
from batchflow.runners.runner import PipelineResult
from batchflow.runners.runner import PipelineState
from batchflow.runners.runner import create_backend
from batchflow.transforms import ptransform
from batchflow.transforms.core import Create
from batchflow.transforms.core import Read
from batchflow.transforms.core import WriteTo

if TYPE_CHECKING:
  from batchflow.runners.planner import JobStage

__all__ = ['Pipeline']

_LOGGER = logging.getLogger(__name__)


class Pipeline(object):
  """A pipeline object that manages an operator graph and its execution.

  The graph nodes are the steps added by applying transforms, directly or
  through the collection methods such as :meth:`PCollection.map`. A
  pipeline holds a single backend instance which executes its job stages
  and keeps the results of earlier runs.
  """
  def __init__(
      self,
      backend=None,  # type: Optional[Union[str, Backend]]
      options=None,  # type: Optional[PipelineOptions]
      argv=None  # type: Optional[List[str]]
  ):
    # type: (...) -> None

    """Initialize a pipeline object.

    Args:
      backend: An object satisfying the :class:`Backend` protocol, or the
        name of a backend class such as ``'DirectBackend'``. If None, the
        ``--backend`` option is used, defaulting to DirectBackend.
      options: A configured
        :class:`~batchflow.options.pipeline_options.PipelineOptions` object
        containing arguments that should be used for running the pipeline.
      argv: A list of arguments (such as :data:`sys.argv`) to be used for
        building a :class:`PipelineOptions` object. This will only be used
        if argument **options** is :data:`None`.

    Raises:
      ValueError: if either the backend or options argument is not of the
        expected type, or an option is out of range.
      TypeError: if backend is neither a name nor a backend object.
    """
    if options is not None:
      if not isinstance(options, PipelineOptions):
        raise ValueError(
            'Parameter options, if specified, must be of type '
            'PipelineOptions. Received : %r' % options)
      self._options = options
    elif argv is not None:
      if not isinstance(argv, list):
        raise ValueError(
            'Parameter argv, if specified, must be a list. Received : %r' %
            argv)
      self._options = PipelineOptions(argv)
    else:
      self._options = PipelineOptions([])

    errors = []
    for view in (DirectOptions, SideInputOptions):
      errors.extend(self._options.view_as(view).validate())
    if errors:
      raise ValueError('Invalid pipeline options: %s' % ' '.join(errors))

    if backend is None:
      backend = self._options.view_as(StandardOptions).backend
      if backend is None:
        backend = StandardOptions.DEFAULT_BACKEND
        _LOGGER.info(
            'Missing backend option, defaulting to %s.',
            StandardOptions.DEFAULT_BACKEND)
    if isinstance(backend, str):
      backend = create_backend(backend, self._options)
    elif not isinstance(backend, Backend):
      raise TypeError(
          'Backend %s is not a backend: it lacks the Backend methods.' %
          backend)
    self.backend = backend

    self._graph = OperatorGraph()
    self._state = PipelineState.BUILDING
    self._lock = threading.Lock()
    # Node ids of requested outputs not yet computed, in request order.
    self._pending = []  # type: List[int]
    # Node ids whose results the backend holds, or sink writes completed.
    self._available = set()
    self._intermediates = []  # type: List[IntermediateSourceTarget]
    self._side_input_targets = {}
    # Set of transform labels (full labels) applied to the pipeline.
    self.applied_labels = set()
    self._label_stack = []  # type: List[str]

    if self._options.view_as(DebugOptions).debug:
      self.enable_debug()

  @property
  def options(self):
    return self._options

  @property
  def graph(self):
    # type: () -> OperatorGraph
    return self._graph

  @property
  def state(self):
    """One of BUILDING, PLANNING, EXECUTING and DONE."""
    return self._state

  def __repr__(self):
    return '<Pipeline %s %s, %d nodes>' % (
        self.backend, self._state, len(self._graph))

  def _check_extensible(self):
    if self._state == PipelineState.DONE:
      raise PipelineStateError(
          'The pipeline is done and can no longer be extended or run.')
    if self._state != PipelineState.BUILDING:
      raise PipelineStateError(
          'The pipeline cannot be changed while %s.' % self._state)

  def apply(
      self,
      transform,  # type: ptransform.PTransform
      pvalueish=None,
      label=None  # type: Optional[str]
  ):
    """Applies a custom transform using the pvalueish specified.

    Args:
      transform (~batchflow.transforms.ptransform.PTransform): the
        transform to apply.
      pvalueish (~batchflow.pvalue.PCollection): the input for the
        transform (typically a collection, or a tuple of collections).
      label (str): label of the transform.

    Raises:
      TypeError: if the transform object extracted from the
        argument list is not a
        :class:`~batchflow.transforms.ptransform.PTransform`.
      PipelineError: if a transform with the same label was already
        applied.
      PipelineStateError: if the pipeline is not accepting new steps.
    """
    if isinstance(transform, ptransform._NamedPTransform):
      return self.apply(
          transform.transform, pvalueish, label or transform.label)

    if not isinstance(transform, ptransform.PTransform):
      raise TypeError("Expected a PTransform object, got %s" % transform)

    self._check_extensible()

    prefix = self._label_stack[-1] + '/' if self._label_stack else ''
    if label or transform.has_user_label:
      full_label = prefix + (label or transform.label)
      if full_label in self.applied_labels:
        raise PipelineError(
            'A transform with label "%s" already exists in the pipeline. '
            'To apply a transform with a specified label write '
            'pvalue | "label" >> transform' % full_label)
    else:
      full_label = unique_name(self.applied_labels, prefix + transform.label)
    self.applied_labels.add(full_label)

    if pvalueish is None:
      pvalueish = pvalue.PBegin(self)

    self._label_stack.append(full_label)
    try:
      return transform.expand(pvalueish)
    finally:
      self._label_stack.pop()

  def _add_node(self, kind, inputs, **attrs):
    """Adds a node for the transform being expanded."""
    self._check_extensible()
    input_ids = []
    for input_pvalue in inputs:
      if not isinstance(input_pvalue, pvalue.PValue):
        raise PipelineError(
            'Expected a collection of this pipeline, got %r.' %
            (input_pvalue, ))
      if input_pvalue.pipeline is not self:
        raise PipelineError(
            '%s belongs to a different pipeline.' % input_pvalue)
      input_ids.append(input_pvalue.node_id)
    label = self._label_stack[-1] if self._label_stack else kind
    node = self._graph.add_node(kind, label, input_ids, **attrs)
    if kind == NodeKind.SINK_WRITE:
      self._pending.append(node.node_id)
    return node

  def read(self, source, label=None):
    """Returns a collection of the records of source.

    The result is a :class:`~batchflow.pvalue.PTable` when the record type
    of the source is a table type.
    """
    return self.apply(Read(source), pvalue.PBegin(self), label)

  def read_text_file(self, path, label=None):
    return self.read(TextFileSource(path), label)

  def create(self, values, ptype=None, label=None):
    return self.apply(Create(values, ptype), pvalue.PBegin(self), label)

  def write(self, pcoll, target, label=None):
    """Requests that pcoll be written to target by the next run."""
    return self.apply(WriteTo(target), pcoll, label)

  def write_text_file(self, pcoll, path, label=None):
    return self.write(pcoll, TextFileTarget(path), label)

  def create_intermediate_output(self, ptype=None):
    # type: (...) -> IntermediateSourceTarget

    """Returns a new source target holding results in the backend's memory.

    It is released by :meth:`done`.
    """
    self._check_extensible()
    target = IntermediateSourceTarget(
        'intermediate-%d' % len(self._intermediates), ptype)
    self._intermediates.append(target)
    return target

  def _side_input_source(self, pcoll):
    """Returns a bounded source holding the records of pcoll."""
    if pcoll.pipeline is not self:
      raise PipelineError('%s belongs to a different pipeline.' % pcoll)
    node = pcoll.producer
    if node.kind == NodeKind.SOURCE_READ and node.source.is_bounded:
      return node.source
    target = self._side_input_targets.get(pcoll.node_id)
    if target is None:
      target = self.create_intermediate_output(pcoll.ptype)
      pdone = self.apply(
          WriteTo(target), pcoll, 'AsSideInput(%s)' % node.label)
      # Only planned when a step reading the side input is.
      self._pending.remove(pdone.node_id)
      self._side_input_targets[pcoll.node_id] = target
    return target

  def enable_debug(self):
    """Makes the backend log additional diagnostics. Results are unchanged.
    """
    self.backend.enable_debug()

  def run(self):
    """Runs the pipeline until every pending output is computed.

    Returns immediately, without submitting anything to the backend, when
    nothing is pending.

    Raises:
      PipelineExecutionError: if a job stage failed. Outputs of stages
        that completed are kept, and the next run only computes the rest.
    """
    result = self.run_async()
    result.wait_until_finish()
    return result

  def run_async(self):
    # type: () -> PipelineResult

    """Plans the pending outputs and starts executing the job stages.

    Returns:
      A :class:`~batchflow.runners.runner.PipelineResult` for the run.
    """
    self._check_extensible()
    with self._lock:
      outputs = list(dict.fromkeys(self._pending))
      available = frozenset(self._available)
    if not outputs:
      _LOGGER.info('Nothing pending, skipping run.')
      return PipelineResult(PipelineState.DONE)

    self._state = PipelineState.PLANNING
    try:
      stages = planner.plan(
          self._graph,
          outputs,
          available,
          supports_side_input=self.backend.supports_side_input())
      dot_file = self._options.view_as(StandardOptions).plan_dot_file
      if dot_file:
        PlanGraph(stages).write(dot_file)
    except Exception:
      self._state = PipelineState.BUILDING
      raise
    _LOGGER.info(
        'Running %d job stages on %s for %d outputs',
        len(stages),
        self.backend,
        len(outputs))

    self._state = PipelineState.EXECUTING
    executor = StageExecutor(
        self.backend,
        stages,
        self._options.view_as(DirectOptions).max_concurrent_stages,
        on_stage_complete=self._stage_completed)
    return ExecutionResult(
        stages, executor, on_finish=self._run_finished).start()

  def _stage_completed(self, stage):
    # type: (JobStage) -> None
    writes = [
        node.node_id for node in stage.nodes()
        if node.kind == NodeKind.SINK_WRITE
    ]
    with self._lock:
      self._available.update(stage.outputs)
      self._available.update(writes)
      self._pending = [n for n in self._pending if n not in self._available]

  def _run_finished(self, result):
    self._state = PipelineState.BUILDING

  def materialize(self, pcoll):
    """Runs the pipeline as needed and returns the records of pcoll."""
    if pcoll.pipeline is not self:
      raise PipelineError('%s belongs to a different pipeline.' % pcoll)
    if self._state == PipelineState.DONE:
      raise PipelineStateError(
          'The pipeline is done; its results have been released.')
    if pcoll.node_id not in self._available:
      self._check_extensible()
      with self._lock:
        self._pending.append(pcoll.node_id)
      try:
        self.run()
      finally:
        with self._lock:
          if pcoll.node_id in self._pending:
            self._pending.remove(pcoll.node_id)
    return list(self.backend.read(pcoll.node_id))

  def done(self):
    """Runs what is pending, then releases every intermediate result.

    The pipeline is DONE afterwards; extending or running it raises
    :class:`~batchflow.error.PipelineStateError`.
    """
    if self._state == PipelineState.DONE:
      return
    self.run()
    self.backend.cleanup()
    for target in self._intermediates:
      target.release()
    self._state = PipelineState.DONE
    _LOGGER.info('Pipeline done.')

  def __enter__(self):
    return self

  def __exit__(self, exc_type, exc_val, exc_tb):
    if not exc_type:
      self.done()
