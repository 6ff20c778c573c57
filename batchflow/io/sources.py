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

"""Sources and targets: handles to readable and writable record locations.

A :class:`Source` is a read-only, referentially stable handle: reading it
twice yields the same logical collection. A :class:`Target` persists the
records of a collection. A :class:`SourceTarget` is both, so that what a
pipeline writes there can be read back by a later step.
"""

# pytype: skip-file

import glob
import logging
import os
import threading
import uuid

from batchflow import typehints
from batchflow.error import PValueError
from batchflow.internal.util import partition

__all__ = [
    'Source',
    'Target',
    'SourceTarget',
    'InMemorySource',
    'TextFileSource',
    'TextFileTarget',
    'TextFileSourceTarget',
    'IntermediateSourceTarget',
]

_LOGGER = logging.getLogger(__name__)


class Source(object):
  """A readable location of records.

  Subclasses implement :meth:`read` and may override :meth:`split` to let a
  backend process the source in several partitions.
  """

  # Whether the source holds a finite number of records. Only bounded
  # sources can be broadcast as side inputs.
  is_bounded = True

  def __init__(self, ptype=None):
    self.ptype = ptype or typehints.anys()
    # Survives pickling, so copies of a source held by a DoFn still find
    # their side input.
    self._source_id = uuid.uuid4().hex

  def _key(self):
    return getattr(self, '_source_id', id(self))

  def __eq__(self, other):
    return type(self) == type(other) and self._key() == other._key()

  def __hash__(self):
    return hash(self._key())

  def read(self):
    """Returns an iterator over all records of this source."""
    raise NotImplementedError

  def split(self, desired_num_splits):
    """Returns sub-sources whose concatenated reads equal :meth:`read`."""
    return [self]

  def display_name(self):
    return type(self).__name__


class Target(object):
  """A writable location of records."""
  def write(self, records):
    raise NotImplementedError

  def display_name(self):
    return type(self).__name__


class SourceTarget(Source, Target):
  """A location that can be written and later read back as a source."""


class InMemorySource(Source):
  """A source over a fixed sequence of values, copied at construction."""
  def __init__(self, values, ptype=None):
    super().__init__(ptype)
    self._values = tuple(values)

  def read(self):
    return iter(self._values)

  def split(self, desired_num_splits):
    return [
        _InMemorySplit(values, self.ptype)
        for values in partition(self._values, desired_num_splits)
    ]

  def __len__(self):
    return len(self._values)

  def display_name(self):
    return 'InMemorySource(%d)' % len(self._values)


class _InMemorySplit(InMemorySource):
  def split(self, desired_num_splits):
    return [self]


class _TextFileLocation(object):
  """Equality by path, so that a target and a source on the same file match."""
  def __eq__(self, other):
    return isinstance(other, _TextFileLocation) and self.path == other.path

  def __hash__(self):
    return hash(('text', self.path))

  def display_name(self):
    return '%s(%s)' % (type(self).__name__, self.path)


class TextFileSource(_TextFileLocation, Source):
  """Reads UTF-8 lines, without line terminators, from files matching a glob.
  """
  def __init__(self, file_pattern, ptype=None):
    Source.__init__(self, ptype or typehints.strings())
    self.path = file_pattern

  def _files(self):
    files = sorted(glob.glob(self.path))
    if not files:
      raise IOError(
          'No files found based on the file pattern %s' % self.path)
    return files

  def read(self):
    for file_name in self._files():
      with open(file_name, encoding='utf-8') as f:
        for line in f:
          yield line.rstrip('\r\n')

  def split(self, desired_num_splits):
    files = self._files()
    if len(files) <= 1:
      return [self]
    return [TextFileSource(file_name, self.ptype) for file_name in files]


class TextFileTarget(_TextFileLocation, Target):
  """Writes one UTF-8 line per record to a single file."""
  def __init__(self, path):
    self.path = path

  def write(self, records):
    directory = os.path.dirname(self.path)
    if directory:
      os.makedirs(directory, exist_ok=True)
    count = 0
    with open(self.path, 'w', encoding='utf-8') as f:
      for record in records:
        f.write('%s\n' % (record, ))
        count += 1
    _LOGGER.info('Wrote %d records to %s', count, self.path)


class TextFileSourceTarget(TextFileSource, TextFileTarget, SourceTarget):
  """A single text file that is written by one step and read by another."""
  def __init__(self, path, ptype=None):
    TextFileSource.__init__(self, path, ptype)


class IntermediateSourceTarget(SourceTarget):
  """A backend-held materialization created by a pipeline.

  It becomes readable once the stage writing it has completed and stays so
  until it is released, which happens when the owning pipeline is done.
  """
  def __init__(self, name, ptype=None):
    super().__init__(ptype)
    self.name = name
    self._lock = threading.Lock()
    self._records = None

  @property
  def is_materialized(self):
    with self._lock:
      return self._records is not None

  def write(self, records):
    records = tuple(records)
    with self._lock:
      self._records = records

  def read(self):
    with self._lock:
      records = self._records
    if records is None:
      raise PValueError('%s has not been materialized.' % self.name)
    return iter(records)

  def split(self, desired_num_splits):
    return [
        InMemorySource(values, self.ptype)
        for values in partition(tuple(self.read()), desired_num_splits)
    ]

  def release(self):
    with self._lock:
      self._records = None

  def __getstate__(self):
    state = self.__dict__.copy()
    del state['_lock']
    state['_records'] = None
    return state

  def __setstate__(self, state):
    self.__dict__.update(state)
    self._lock = threading.Lock()

  def display_name(self):
    return 'Intermediate(%s)' % self.name

  def __repr__(self):
    return '<IntermediateSourceTarget %s>' % self.name
