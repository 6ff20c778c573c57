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

"""Pipeline options obtained from command line parsing."""

# pytype: skip-file

import argparse
import json
import logging
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Type
from typing import TypeVar

__all__ = [
    'PipelineOptions',
    'StandardOptions',
    'DirectOptions',
    'DebugOptions',
    'SideInputOptions',
]

PipelineOptionsT = TypeVar('PipelineOptionsT', bound='PipelineOptions')

_LOGGER = logging.getLogger(__name__)


class _BatchflowArgumentParser(argparse.ArgumentParser):
  """An ArgumentParser that tolerates ambiguous prefixes of unknown flags."""

  # The argparse package by default tries to autocomplete option names. This
  # results in an "ambiguous option" error from argparse when an unknown option
  # matching multiple known ones are used. This suppresses that behavior.
  def error(self, message):
    if message.startswith('ambiguous option: '):
      return
    super().error(message)


class PipelineOptions(object):
  """This class and subclasses are used as containers for command line options.

  These classes are wrappers over the standard argparse Python module. To
  define one option or a group of options, create a subclass from
  PipelineOptions.

  Example Usage::

    class XyzOptions(PipelineOptions):

      @classmethod
      def _add_argparse_args(cls, parser):
        parser.add_argument('--abc', default='start')
        parser.add_argument('--xyz', default='end')

  Instances of PipelineOptions or any of its subclass have access to values
  defined by other PipelineOption subclasses (see get_all_options()), and
  can be converted to an instance of another PipelineOptions subclass
  (see view_as()). All views share the underlying data structure that stores
  option key-value pairs.
  """
  def __init__(self, flags=None, **kwargs):
    # type: (Optional[List[str]], **Any) -> None

    """Initialize an options class.

    Args:
      flags: An iterable of command line arguments to be used. If not specified
        then sys.argv will be used as input for parsing arguments.

      **kwargs: Add overrides for arguments passed in flags. Pass the option
        names (the argparse dest), not the flag names.
    """
    # self._flags stores a list of not yet parsed arguments, typically,
    # command-line flags. This list is shared across different views.
    self._flags = flags

    parser = _BatchflowArgumentParser()
    for cls in type(self).mro():
      if cls == PipelineOptions:
        break
      elif '_add_argparse_args' in cls.__dict__:
        cls._add_argparse_args(parser)  # type: ignore

    self._visible_options, _ = parser.parse_known_args(flags)

    # Shared across views and lazily filled in as views are created.
    self._all_options = kwargs

    for option_name in self._visible_option_list():
      # Note that options specified in kwargs will not be overwritten.
      if option_name not in self._all_options:
        self._all_options[option_name] = getattr(
            self._visible_options, option_name)

  @classmethod
  def _add_argparse_args(cls, parser):
    # type: (_BatchflowArgumentParser) -> None
    # Override this in subclasses to provide options.
    pass

  @classmethod
  def from_dictionary(cls, options):
    """Returns a PipelineOptions from a dictionary of arguments.

    Args:
      options: Dictionary of argument value pairs.

    Returns:
      A PipelineOptions object representing the given arguments.
    """
    flags = []
    for k, v in options.items():
      # A True boolean is passed as a bare flag, a False one is dropped.
      if isinstance(v, bool):
        if v:
          flags.append('--%s' % k)
      elif isinstance(v, list):
        for i in v:
          flags.append('--%s=%s' % (k, i))
      elif isinstance(v, dict):
        flags.append('--%s=%s' % (k, json.dumps(v)))
      elif v is None:
        _LOGGER.warning('Not setting flag with value None: %s', k)
      else:
        flags.append('--%s=%s' % (k, v))

    return cls(flags)

  def get_all_options(self, drop_default=False):
    # type: (bool) -> Dict[str, Any]

    """Returns a dictionary of all defined arguments.

    Args:
      drop_default: If set to true, options that are equal to their default
        values, are not returned as part of the result dictionary.

    Returns:
      Dictionary of all args and values.
    """
    subset = {}
    parser = _BatchflowArgumentParser()
    for cls in PipelineOptions.__subclasses__():
      subset[str(cls)] = cls
    for cls in subset.values():
      cls._add_argparse_args(parser)  # pylint: disable=protected-access

    known_args, unknown_args = parser.parse_known_args(self._flags)
    if unknown_args:
      _LOGGER.warning("Discarding unparseable args: %s", unknown_args)
    result = vars(known_args)

    overrides = self._all_options.copy()
    for k in list(result):
      overrides.pop(k, None)
      if k in self._all_options:
        result[k] = self._all_options[k]
      if drop_default and parser.get_default(k) == result[k]:
        del result[k]

    if overrides:
      _LOGGER.warning("Discarding invalid overrides: %s", overrides)

    return result

  def view_as(self, cls):
    # type: (Type[PipelineOptionsT]) -> PipelineOptionsT

    """Returns a view of current object as provided PipelineOption subclass.

    Example Usage::

      options = PipelineOptions(['--backend', 'inmemory', '--debug'])
      debug_options = options.view_as(DebugOptions)
      if debug_options.debug:
        # ... log more ...

    Note that options objects may have multiple views, and modifications
    of values in any view-object will apply to current object and other
    view-objects.
    """
    view = cls(self._flags)

    for option_name in view._visible_option_list():
      # Initialization happens only once per key so overrides already stored
      # in _all_options are preserved.
      if option_name not in self._all_options:
        self._all_options[option_name] = getattr(
            view._visible_options, option_name)
    # Note that views will still store _all_options of the source object.
    view._all_options = self._all_options
    return view

  def validate(self):
    # type: () -> List[str]

    """Returns a list of error messages, empty when the options are valid."""
    return []

  def _visible_option_list(self):
    # type: () -> List[str]
    return sorted(
        option for option in dir(self._visible_options) if option[0] != '_')

  def __dir__(self):
    # type: () -> List[str]
    return sorted(
        dir(type(self)) + list(self.__dict__) + self._visible_option_list())

  def __getattr__(self, name):
    # Special methods which may be accessed before the object is
    # fully constructed (e.g. in unpickling).
    if name[:2] == name[-2:] == '__':
      return object.__getattribute__(self, name)
    elif name in self._visible_option_list():
      return self._all_options[name]
    else:
      raise AttributeError(
          "'%s' object has no attribute '%s'" % (type(self).__name__, name))

  def __setattr__(self, name, value):
    if name in ('_flags', '_all_options', '_visible_options'):
      super().__setattr__(name, value)
    elif name in self._visible_option_list():
      self._all_options[name] = value
    else:
      raise AttributeError(
          "'%s' object has no attribute '%s'" % (type(self).__name__, name))

  def __str__(self):
    return '%s(%s)' % (
        type(self).__name__,
        ', '.join(
            '%s=%s' % (option, getattr(self, option))
            for option in self._visible_option_list()))


class StandardOptions(PipelineOptions):

  DEFAULT_BACKEND = 'DirectBackend'

  ALL_KNOWN_BACKENDS = (
      'batchflow.runners.direct.direct_backend.DirectBackend',
      'batchflow.runners.inmemory.inmemory_backend.InMemoryBackend',
  )

  KNOWN_BACKEND_NAMES = [path.split('.')[-1] for path in ALL_KNOWN_BACKENDS]

  @classmethod
  def _add_argparse_args(cls, parser):
    parser.add_argument(
        '--backend',
        help=(
            'Backend used to execute job stages. Valid values are '
            'one of %s, or the fully qualified name of a backend '
            'class. If unspecified, defaults to %s.' %
            (', '.join(cls.KNOWN_BACKEND_NAMES), cls.DEFAULT_BACKEND)))
    parser.add_argument(
        '--plan_dot_file',
        default=None,
        help='If set, every execution plan is also written to this file '
        'in DOT format.')


class DirectOptions(PipelineOptions):
  """DirectBackend-specific execution options."""
  @classmethod
  def _add_argparse_args(cls, parser):
    parser.add_argument(
        '--direct_num_workers',
        type=int,
        default=4,
        help='number of threads processing partitions in parallel.')
    parser.add_argument(
        '--num_partitions',
        type=int,
        default=4,
        help='number of partitions each job stage is split into.')
    parser.add_argument(
        '--max_concurrent_stages',
        type=int,
        default=None,
        help='upper bound on independent job stages in flight at once. '
        'Unbounded if unset.')

  def validate(self):
    errors = []
    for name in ('direct_num_workers', 'num_partitions'):
      if getattr(self, name) < 1:
        errors.append('--%s must be at least 1.' % name)
    if self.max_concurrent_stages is not None and self.max_concurrent_stages < 1:
      errors.append('--max_concurrent_stages must be at least 1.')
    return errors


class DebugOptions(PipelineOptions):
  @classmethod
  def _add_argparse_args(cls, parser):
    parser.add_argument(
        '--debug',
        default=False,
        action='store_true',
        help='Log extra diagnostics while executing. Results are unaffected.')


class SideInputOptions(PipelineOptions):
  """Options for side inputs broadcast to every partition."""
  @classmethod
  def _add_argparse_args(cls, parser):
    parser.add_argument(
        '--side_input_memory_limit_mb',
        type=float,
        default=256,
        help='A warning is logged when the estimated in-memory size of a '
        'resolved side input exceeds this many megabytes.')

  def validate(self):
    if self.side_input_memory_limit_mb <= 0:
      return ['--side_input_memory_limit_mb must be positive.']
    return []
