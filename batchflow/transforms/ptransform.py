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

"""PTransform and descendants.

A PTransform is an object describing (not executing) a computation. The actual
execution semantics for a transform is captured by the backend that runs the
job stage it ends up in.

A PTransform is applied to collections with the ``|`` operator, optionally
with a label given through ``>>``::

  words = lines | 'Split' >> FlatMap(lambda line: line.split())

Every application adds one or more nodes to the operator graph of the
pipeline owning the input. Nothing runs until the pipeline is run.
"""

# pytype: skip-file

from typing import Optional

from batchflow import pvalue

__all__ = ['PTransform', 'label_from_callable']


def label_from_callable(fn):
  if hasattr(fn, 'default_label'):
    return fn.default_label()
  elif hasattr(fn, '__name__'):
    if fn.__name__ == '<lambda>':
      return '<lambda at %s:%s>' % (
          fn.__code__.co_filename.split('/')[-1], fn.__code__.co_firstlineno)
    return fn.__name__
  return str(fn)


class PTransform(object):
  """A transform object used to modify one or more PCollections.

  Subclasses must define an expand() method that will be used when the
  transform is applied to some arguments.
  """
  def __init__(self, label=None):
    # type: (Optional[str]) -> None
    super().__init__()
    self.label = label  # type: ignore # https://github.com/python/mypy/issues/3004

  @property
  def label(self):
    # type: () -> str
    return self._user_label or self.default_label()

  @label.setter
  def label(self, value):
    # type: (Optional[str]) -> None
    self._user_label = value

  @property
  def has_user_label(self):
    return bool(self._user_label)

  def default_label(self):
    # type: () -> str
    return self.__class__.__name__

  def expand(self, input_or_inputs):
    raise NotImplementedError

  def __str__(self):
    return '<%s>' % self._str_internal()

  def __repr__(self):
    return '<%s at %s>' % (self._str_internal(), hex(id(self)))

  def _str_internal(self):
    return '%s(PTransform)%s' % (
        self.__class__.__name__,
        ' label=[%s]' % self.label if self.label else '')

  def __rrshift__(self, label):
    return _NamedPTransform(self, label)

  def __ror__(self, left, label=None):
    """Used to apply this PTransform to a PValue or a tuple of PValues."""
    # pylint: disable=wrong-import-order, wrong-import-position
    from batchflow.pipeline import Pipeline
    if isinstance(left, Pipeline):
      left = pvalue.PBegin(left)
    pvalues = left if isinstance(left, (tuple, list)) else (left, )
    pipelines = [v.pipeline for v in pvalues if isinstance(v, pvalue.PValue)]
    if not pipelines:
      raise TypeError(
          'Cannot apply %s to %r: expected a PCollection.' % (self, left))
    return pipelines[0].apply(self, left, label)


class _NamedPTransform(PTransform):
  def __init__(self, transform, label):
    super().__init__(label)
    self.transform = transform

  def __ror__(self, pvalueish, _unused=None):
    return self.transform.__ror__(pvalueish, self.label)

  def expand(self, pvalue):
    raise RuntimeError("Should never be expanded directly.")

  def __rrshift__(self, label):
    return _NamedPTransform(self.transform, label)
