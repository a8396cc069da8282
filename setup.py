from setuptools import setup

description = 'Request correlation and message routing over a persistent websocket'

setup(
    name='rtm-socket',
    version='0.9.0',
    description=description,
    long_description=description,
    python_requires='>=3.9',
    packages=['rtm', 'rtm.tools'],
    install_requires=[
        'click>=8,<9',
        'colorama<1',
        'orjson>=3,<4',
        'PyYAML>=5',
        'structlog>=21',
        'websockets>=12',
    ],
    extras_require={
        'test': [
            'pytest>=7',
            'pytest-mock>=3',
        ],
    },
    entry_points={
        'console_scripts': ['rtm=rtm.cli:cli'],
    },
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Natural Language :: English',
        'Programming Language :: Python :: 3.9',
    ],
    package_data={
        'rtm': ['py.typed'],
    },
)
