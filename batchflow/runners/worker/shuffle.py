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

"""Reshuffles performed by a backend before a stage rooted at one runs.

Every function returns a list so that the result can be partitioned. Groups
are emitted in the order their keys were first seen and values keep their
arrival order.
"""

# pytype: skip-file

import collections
import itertools

__all__ = ['group_by_key', 'join', 'union']


def group_by_key(records):
  """Returns ``(key, [values])`` pairs, one per distinct key."""
  grouped = collections.defaultdict(list)
  for key, value in records:
    grouped[key].append(value)
  return list(grouped.items())


def join(left, right):
  """Inner join of two keyed record sequences.

  Emits ``(key, (left_value, right_value))`` for every pair of values that
  share a key, following the order of the left side and, per key, of the
  right side.
  """
  right_by_key = dict(group_by_key(right))
  result = []
  for key, left_value in left:
    for right_value in right_by_key.get(key, ()):
      result.append((key, (left_value, right_value)))
  return result


def union(inputs):
  """Concatenates the given record sequences."""
  return list(itertools.chain.from_iterable(inputs))
