import os
import sys

from setuptools import setup, find_packages

setup(

    # Vitals
    name='xteacore',
    license='BSD',
    description='XTEA block cipher core with a register interface, in nMigen',

    # Imports / exports / requirements.
    platforms='any',
    packages=find_packages(),
    include_package_data=True,
    python_requires=">=3.8",
    install_requires=[
        'nmigen',
        # nmigen pins Jinja2 2.x, which breaks with newer MarkupSafe
        'MarkupSafe<2.1',
    ],
    extras_require={
        'test': ['pytest'],
    },
    setup_requires=['setuptools'],

)
