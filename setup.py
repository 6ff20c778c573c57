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

"""Batchflow setup file."""

import os
import sys
import warnings

import setuptools


def get_version():
  global_names = {}
  exec(  # pylint: disable=exec-used
      open(os.path.join(
          os.path.dirname(os.path.abspath(__file__)),
          'batchflow/version.py')
          ).read(),
      global_names
  )
  return global_names['__version__']


PACKAGE_NAME = 'batchflow'
PACKAGE_VERSION = get_version()
PACKAGE_DESCRIPTION = 'Deferred-execution batch pipelines for Python'
PACKAGE_AUTHOR = 'Batchflow Authors'
PACKAGE_KEYWORDS = 'batch pipeline mapreduce join'
PACKAGE_LONG_DESCRIPTION = '''
Batchflow builds a graph of collection operations lazily and runs it only
when results are requested. A planner fuses element-wise steps into job
stages, side inputs are broadcast to every partition, and keyed tables can
be joined map-side without a shuffle.
'''

python_requires = '>=3.8'

if sys.version_info.major == 3 and sys.version_info.minor >= 14:
  warnings.warn(
      'This version of Batchflow has not been sufficiently tested on '
      'Python %s.%s. You may encounter bugs or missing features.' %
      (sys.version_info.major, sys.version_info.minor))

if __name__ == '__main__':
  # Keep all dependencies inlined in the setup call.
  setuptools.setup(
      name=PACKAGE_NAME,
      version=PACKAGE_VERSION,
      description=PACKAGE_DESCRIPTION,
      long_description=PACKAGE_LONG_DESCRIPTION,
      author=PACKAGE_AUTHOR,
      packages=setuptools.find_packages(include=['batchflow', 'batchflow.*']),
      install_requires=[
          'cloudpickle>=2.2.1,<4',
          'objsize>=0.6.1,<0.8.0',
          'pydot>=1.2.0,<4',
      ],
      python_requires=python_requires,
      # Do NOT use tests_require or setup_requires.
      extras_require={
          'test': [
              'parameterized>=0.7.1,<0.10.0',
              'pyhamcrest>=1.9,!=1.10.0,<3.0.0',
              'pytest>=7.1.2,<9.0',
              'pytest-timeout>=2.1.0,<3',
          ],
      },
      zip_safe=False,
      classifiers=[
          'Intended Audience :: Developers',
          'License :: OSI Approved :: Apache Software License',
          'Operating System :: POSIX :: Linux',
          'Programming Language :: Python :: 3.8',
          'Programming Language :: Python :: 3.9',
          'Programming Language :: Python :: 3.10',
          'Programming Language :: Python :: 3.11',
          'Programming Language :: Python :: 3.12',
          'Programming Language :: Python :: 3.13',
          # When updating version classifiers, also update version warnings
          # above.
          'Topic :: Software Development :: Libraries',
          'Topic :: Software Development :: Libraries :: Python Modules',
      ],
      license='Apache License, Version 2.0',
      keywords=PACKAGE_KEYWORDS,
  )
