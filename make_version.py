#!/usr/bin/env python
'''
Writes `magi/_version.py` from the output of `git describe`. The existing
version is kept when git is not available, e.g. when building from an sdist.
'''
import subprocess as sp
import re
from pathlib import Path

VERSION_FILE = Path('magi/_version.py')


def read_version_info():
    info = {'__git_hash__': '', '__version__': '0+unknown'}
    if VERSION_FILE.exists():
        info.update(
            re.findall(r'(__[A-Za-z_]+__)\s*=\s*"([^"]+)"',
                       VERSION_FILE.read_text())
            )

    return info


def git_output(*args):
    return sp.check_output(['git'] + list(args), stderr=sp.DEVNULL).strip().decode()


if __name__ == '__main__':
    info = read_version_info()
    try:
        info['__git_hash__'] = git_output('rev-parse', 'HEAD')
        public, *private = git_output('describe', '--always', '--dirty').split('-')
        if private:
            info['__version__'] = public + '+' + '.'.join(private)
        else:
            info['__version__'] = public

    except (OSError, sp.CalledProcessError):
        print('Unable to retrieve the current version from git')

    with VERSION_FILE.open('w') as fb:
        fb.write('__git_hash__ = "%s"\n' % info['__git_hash__'])
        fb.write('__version__ = "%s"\n' % info['__version__'])
