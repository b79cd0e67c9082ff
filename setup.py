# coding: utf-8
import os
from setuptools import find_packages, setup


def read_version():
    with open(os.path.join(os.path.dirname(__file__), "unresponsive", "VERSION")) as f:
        return f.read().strip()


install_requires = [
    'eventlet >= 0.35',
    'PyYAML >= 5.1',
]

setup(
    name='unresponsive',
    version=read_version(),

    description="Deliberately slow TCP/HTTP server for testing clients, proxies and load balancers.",
    long_description=open(
        os.path.join(
            os.path.dirname(__file__),
            'README'
        )
    ).read(),

    classifiers=[
        "Development Status :: 3 - Alpha",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Topic :: Internet :: WWW/HTTP",
        "Topic :: Software Development :: Testing",
    ],

    packages=find_packages(exclude=['tests', 'tests.*']),
    include_package_data=True,
    install_requires=install_requires,
    extras_require={
        'test': ['pytest'],
    },
    zip_safe=False,

    entry_points = {
        'console_scripts': [
            'unresponsive = unresponsive.server.cli_server:main',
        ],
    },
)
