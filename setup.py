import os, sys
from setuptools import setup, find_packages
from setuptools.command.build_py import build_py as _build

CLASSIFIERS = [
    'Operating System :: POSIX',
    'Operating System :: MacOS :: MacOS X',
    'Intended Audience :: Science/Research',
    'Programming Language :: Python',
    'Programming Language :: Python :: 3',
    'Topic :: Internet :: WWW/HTTP :: WSGI :: Application'
]

def get_version():
    out = "0.1.dev0"
    pkgdir = os.environ.get('PACKAGE_DIR', os.path.dirname(os.path.abspath(__file__)))
    versfile = os.path.join(pkgdir, 'VERSION')
    if os.path.exists(versfile):
        with open(versfile) as fd:
            parts = fd.readline().split()
        if len(parts) > 0:
            out = parts[-1]
    return out

def write_version_mod(version):
    versmodf = os.path.join('scholarsphere', "version.py")
    with open(versmodf, 'w') as fd:
        fd.write('"""')
        fd.write("""
An identification of the system version.  Note that this module file gets
(over-) written by the build process.
""")
        fd.write('"""\n\n')
        fd.write('__version__ = "')
        fd.write(version)
        fd.write('"\n')

class build(_build):

    def run(self):
        write_version_mod(get_version())
        _build.run(self)

setup(name='scholarsphere',
      version=get_version(),
      description="scholarsphere: the repository core for generic files and collections",
      url='https://github.com/psu-stewardship/scholarsphere',
      python_requires='>=3.8',
      scripts=[ 'scripts/ssadm.py', 'scripts/scholarsphere-uwsgi.py' ],
      packages=find_packages(include=['scholarsphere', 'scholarsphere.*']),
      install_requires=[
          'PyYAML',
          'requests',
          'pymongo',
          'jsonpatch',
          'PyJWT',
          'pynoid',
          'Werkzeug'
      ],
      extras_require={
          'test': [ 'pytest' ]
      },
      entry_points={
          'console_scripts': [ 'ssadm = scholarsphere.cli.ssadm:run' ]
      },
      cmdclass={'build_py': build},
      classifiers=CLASSIFIERS,
      zip_safe=False
)
