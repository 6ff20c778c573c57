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

"""Joins of two keyed tables.

Two strategies are offered. :func:`join` shuffles both tables by key and
works on every backend. :func:`mapside_join` broadcasts the right table to
every partition of the left one, which avoids shuffling the left table but
requires a backend that supports side inputs and a right table small enough
to hold in memory.

Example::

  orders = p.read(orders_source)  # PTable[customer_id, order]
  names = p.read(names_source)  # PTable[customer_id, name]
  named_orders = mapside_join(orders, names)
"""

# pytype: skip-file

import logging

from batchflow import typehints
from batchflow.error import UnsupportedBackendError
from batchflow.transforms.core import DoFn
from batchflow.transforms.core import ParallelDoOptions
from batchflow.transforms.core import _ensure_table
from batchflow.transforms.ptransform import PTransform
from batchflow.transforms.sideinputs import build_multimap

__all__ = ['mapside_join', 'shuffle_join', 'MapsideJoin']

_LOGGER = logging.getLogger(__name__)


class _MapsideJoinDoFn(DoFn):
  """Joins each streamed (k, a) record against an in-memory side table."""
  def __init__(self, side_source):
    self._side_source = side_source
    self._multimap = None

  def start_bundle(self, context):
    self._multimap = build_multimap(context.side_input(self._side_source))
    _LOGGER.debug(
        'Partition %d of %s holds %d side input keys',
        context.partition_index,
        context.label,
        len(self._multimap))

  def process(self, element):
    key, value = element
    for side_value in self._multimap.get(key, ()):
      yield key, (value, side_value)

  def teardown(self):
    self._multimap = None


def _joined_type(left, right):
  return typehints.table_of(
      getattr(left.ptype, 'key_type', typehints.anys()),
      typehints.pairs(
          getattr(left.ptype, 'value_type', typehints.anys()),
          getattr(right.ptype, 'value_type', typehints.anys())))


def mapside_join(left, right, label=None):
  """Inner join of two tables, holding right in memory on every partition.

  Emits ``(k, (a, b))`` for each left record ``(k, a)`` and each value
  ``b`` of key ``k`` in right, in the order right's records were read.
  Left keys absent from right produce nothing.

  Args:
    left: the streamed :class:`~batchflow.pvalue.PTable`.
    right: the :class:`~batchflow.pvalue.PTable` broadcast to every
      partition. Its whole contents must fit in memory.
    label: optional label of the join step.

  Raises:
    UnsupportedBackendError: if the backend of the pipeline cannot
      broadcast side inputs. Nothing is added to the pipeline in that case.
  """
  backend = left.pipeline.backend
  if not backend.supports_side_input():
    raise UnsupportedBackendError(
        'A map-side join needs a backend supporting side inputs; %s does '
        'not. Use shuffle_join() instead.' % backend)
  return left.pipeline.apply(MapsideJoin(right), left, label)


def shuffle_join(left, right, label=None):
  """Inner join of two tables through a shuffle of both.

  Produces the same records as :func:`mapside_join` on every backend,
  without holding either side in memory.
  """
  return left.join(right, label=label)


# The join of the collection API is the map-side one.
join = mapside_join


class MapsideJoin(PTransform):
  """``left | MapsideJoin(right)``: see :func:`mapside_join`."""
  def __init__(self, right, label=None):
    super().__init__(label)
    self.right = right

  def default_label(self):
    return 'MapsideJoin(%s)' % self.right.label

  def expand(self, left):
    pipeline = left.pipeline
    if not pipeline.backend.supports_side_input():
      raise UnsupportedBackendError(
          'A map-side join needs a backend supporting side inputs; %s does '
          'not. Use shuffle_join() instead.' % pipeline.backend)
    _ensure_table(left, self)
    _ensure_table(self.right, self)
    side = self.right.as_side_input()
    return left.parallel_do(
        'Join',
        _MapsideJoinDoFn(side),
        ptype=_joined_type(left, self.right),
        options=ParallelDoOptions.of(side))
