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

"""Utilities for testing batchflow pipelines."""

# pytype: skip-file

from batchflow import pvalue
from batchflow.io.sources import Target

__all__ = [
    'assert_that',
    'equal_to',
    'is_empty',
    'is_not_empty',
]


class BatchflowAssertException(Exception):
  """Exception raised by matcher classes used by assert_that transform."""

  pass


def equal_to(expected, equals_fn=None):
  def _equal(actual, equals_fn=equals_fn):
    expected_list = list(expected)

    # Try to compare actual and expected by sorting. This fails with a
    # TypeError if different types are present in the same collection.
    if not equals_fn:
      equals_fn = lambda e, a: e == a
      try:
        sorted_expected = sorted(expected)
        sorted_actual = sorted(actual)
        if sorted_expected == sorted_actual:
          return
      except TypeError:
        pass
    # Slower method, used to report the differences and as a fallback for
    # elements that cannot be sorted.
    unexpected = []
    for element in actual:
      found = False
      for i, v in enumerate(expected_list):
        if equals_fn(v, element):
          found = True
          expected_list.pop(i)
          break
      if not found:
        unexpected.append(element)
    if unexpected or expected_list:
      msg = 'Failed assert: %r == %r' % (expected, actual)
      if unexpected:
        msg = msg + ', unexpected elements %r' % unexpected
      if expected_list:
        msg = msg + ', missing elements %r' % expected_list
      raise BatchflowAssertException(msg)

  return _equal


def is_empty():
  def _empty(actual):
    actual = list(actual)
    if actual:
      raise BatchflowAssertException('Failed assert: [] == %r' % actual)

  return _empty


def is_not_empty():
  def _not_empty(actual):
    actual = list(actual)
    if not actual:
      raise BatchflowAssertException('Failed assert: pcol is empty')

  return _not_empty


class _AssertTarget(Target):
  """Checks the records written to it with a matcher."""
  def __init__(self, matcher):
    self.matcher = matcher

  def write(self, records):
    self.matcher(list(records))

  def display_name(self):
    return 'AssertThat'


def assert_that(actual, matcher, label=None):
  """A step that checks a collection when the pipeline runs.

  A failed check fails the job stage computing the collection, so
  :meth:`Pipeline.run` raises.

  Args:
    actual: A PCollection, or a list of already computed records which is
      checked immediately.
    matcher: A matcher such as the result of :func:`equal_to`, called with
      the list of all records.
    label: Optional label of the checking step.

  Returns:
    The PDone of the checking step, or None for a list.
  """
  if isinstance(actual, pvalue.PCollection):
    return actual.write(_AssertTarget(matcher), label=label)
  matcher(list(actual))
