import setuptools


VERSION = '0.1.0'

with open('requirements.txt') as file:
    requirements = list(map(str.strip, file.readlines()))


setuptools.setup(
    name='timerpc',
    version=VERSION,
    description='Minimal synchronous time server RPC over TCP',
    packages=setuptools.find_packages(exclude=['tests', 'example']),
    install_requires=requirements,
    extras_require={
        'test': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'timerpc = timerpc.__main__:main',
        ],
    },
)
