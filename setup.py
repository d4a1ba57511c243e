from setuptools import setup, find_packages  # type: ignore

setup(
    name='relaytools',
    version='0.1.0',
    packages=find_packages(exclude=['tests', 'tests.*']),
    install_requires=[
        'requests',
        'bs4',
        'brotli',
        'web3>=6',
        'loguru',
        'asyncpg',
        'sqlparse',
    ],
    extras_require={
        'test': ['pytest'],
    },
    include_package_data=True,
    package_data={
        'relaytools': [
            'sql/*/*.sql',      # Include all .sql files in sql/ subdirectories
            'sql/*.sql',        # Include .sql files directly in sql/
        ],
    },
    description='Relay network verification and reward bot',
    classifiers=[
        'Programming Language :: Python :: 3',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.11',
    entry_points={
        'console_scripts': [
            'relaytools=relaytools.cli:main',
        ],
    },
)
