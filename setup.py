#! /usr/bin/env python3

import sys
import os
from setuptools import setup

assert 0x03060000 <= sys.hexversion, \
    "Install Python, version 3.6 or greater"

URL = 'https://github.com/git-notify/git-notify'


def read_version():
    sys.path.insert(0, os.path.join('git-notify'))
    import git_notify
    return git_notify.__version__


def read_readme():
    readme = open(os.path.join('git-notify', 'README')).read()
    return readme

setup(
    name='git-notify',
    version=read_version(),
    description='Send one notification email per commit pushed to a Git repository',
    long_description=read_readme(),
    classifiers=[
        'Development Status :: 5 - Production/Stable',
        'Environment :: No Input/Output (Daemon)',
        'Intended Audience :: Developers',
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: GNU General Public License v2 (GPLv2)',
        'Operating System :: POSIX',
        'Programming Language :: Python :: 3',
        'Topic :: Communications :: Email',
        'Topic :: Software Development :: Version Control',
        ],
    keywords='git hook email',
    url=URL,
    license='GPLv2',
    python_requires='>=3.6',
    package_dir={'': 'git-notify'},
    py_modules=['git_notify'],
    entry_points={
        'console_scripts': ['git-notify = git_notify:run'],
        },
    extras_require={
        'test': ['pytest'],
        },
    )
