#!/usr/bin/env python
if __name__ == '__main__':
    from setuptools import setup
    from pathlib import Path
    import subprocess as sp
    import re

    # This package may not be distributed with `make_version.py`. In that
    # case, the version file should already exist.
    if Path('make_version.py').exists():
        sp.call(['python', 'make_version.py'])

    version_file = Path('magi/_version.py')
    version_text = version_file.read_text()
    version_info = dict(
        re.findall(r'(__[A-Za-z_]+__)\s*=\s*"([^"]+)"', version_text)
        )

    setup(
        name='magi-gpcov',
        version=version_info['__version__'],
        description='Gaussian process covariance engine for manifold-'
                    'constrained inference of ordinary differential equations',
        packages=['magi'],
        include_package_data=True,
        license='MIT',
        python_requires='>=3.8',
        install_requires=[
            'numpy>=1.17',
            'scipy>=1.1',
            'sympy'
            ],
        extras_require={
            'test': ['pytest']
            }
        )
