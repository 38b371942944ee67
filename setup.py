#!/usr/bin/env python3
"""
Setup script for Shop Archiver.

Installs the shop_archiver package with all dependencies.
"""

from setuptools import setup, find_packages
import os

# Read the README for long description
here = os.path.abspath(os.path.dirname(__file__))
readme_path = os.path.join(here, 'README.md')

if os.path.exists(readme_path):
    with open(readme_path, 'r', encoding='utf-8') as f:
        long_description = f.read()
else:
    long_description = 'Discover, capture and serve offline archives of e-commerce sites.'

# Read requirements
requirements_path = os.path.join(here, 'requirements.txt')
install_requires = []
if os.path.exists(requirements_path):
    with open(requirements_path, 'r', encoding='utf-8') as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith('#'):
                install_requires.append(line)

setup(
    name='shop-archiver',
    version='1.0.0',
    author='Shop Archiver Team',
    author_email='',
    description='Discover, capture and serve offline archives of e-commerce sites',
    long_description=long_description,
    long_description_content_type='text/markdown',
    packages=find_packages(exclude=['tests', 'tests.*']),
    include_package_data=True,
    classifiers=[
        'Development Status :: 4 - Beta',
        'Environment :: Console',
        'Environment :: Web Environment',
        'Intended Audience :: Developers',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: Internet :: WWW/HTTP :: Site Management',
        'Topic :: System :: Archiving',
    ],
    python_requires='>=3.8',
    install_requires=install_requires,
    extras_require={
        'test': [
            'pytest>=7.0',
            'pytest-asyncio>=0.21',
        ],
    },
    entry_points={
        'console_scripts': [
            'shop-archiver=shop_archiver.main:run',
            'shop-archiver-serve=shop_archiver.web.run:main',
        ],
    },
    keywords=[
        'archive',
        'offline',
        'crawler',
        'e-commerce',
        'snapshot',
        'playwright',
    ],
)
