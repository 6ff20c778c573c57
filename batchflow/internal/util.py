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

"""Utility functions used throughout the package.

For internal use only. No backwards compatibility guarantees.
"""

# pytype: skip-file

__all__ = ['partition', 'only_element', 'unique_name']


def partition(records, num_partitions):
  """Splits a sequence into at most num_partitions contiguous slices.

  Concatenating the returned slices yields the input in its original order.
  At least one (possibly empty) slice is always returned.
  """
  records = tuple(records)
  num_partitions = max(1, min(num_partitions, len(records)))
  size, extra = divmod(len(records), num_partitions)
  slices = []
  start = 0
  for i in range(num_partitions):
    end = start + size + (1 if i < extra else 0)
    slices.append(records[start:end])
    start = end
  return slices


def only_element(iterable):
  element, = iterable
  return element


def unique_name(existing, prefix):
  """Returns prefix, or prefix with a counter appended if already taken."""
  if prefix not in existing:
    return prefix
  counter = 0
  while True:
    counter += 1
    prefix_counter = prefix + "_%s" % counter
    if prefix_counter not in existing:
      return prefix_counter
