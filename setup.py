from setuptools import setup

DESCRIPTION = 'Chunked, compressed, N-dimensional array storage ' \
              'with region reads and writes.'

with open('README.md') as f:
    LONG_DESCRIPTION = f.read()

dependencies = [
    'numpy>=1.21',
    'numcodecs>=0.10',
    'fasteners',
    'donfig>=0.8',
]

setup(
    name='zchunk',
    version='0.1.0',
    description=DESCRIPTION,
    long_description=LONG_DESCRIPTION,
    long_description_content_type='text/markdown',
    setup_requires=[
        'setuptools>=38.6.0',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    python_requires='>=3.8, <4',
    install_requires=dependencies,
    package_dir={'': '.'},
    packages=['zchunk', 'zchunk.tests'],
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Intended Audience :: Information Technology',
        'Intended Audience :: Science/Research',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python',
        'Topic :: Software Development :: Libraries :: Python Modules',
        'Operating System :: Unix',
        'Programming Language :: Python :: 3',
    ],
    license='MIT',
)
