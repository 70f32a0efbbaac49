"""
Setup script for SafeChat - zero-knowledge relay for ephemeral encrypted group chats.

Created by SafeChat contributors

This package provides:
- An in-memory relay server that routes ciphertext it cannot read
- Ephemeral rooms, destroyed when the last member leaves
- Client session management with X25519 key agreement and per-peer keys
- Authenticated encryption (ChaCha20-Poly1305) with fresh nonces per message
- Safety numbers for out-of-band key verification
- Opaque call-signaling relay
"""

from setuptools import setup, find_packages
import os

this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='safechat-relay',
    version='1.0.0',
    author='SafeChat contributors',
    description='A zero-knowledge relay server and client for ephemeral end-to-end encrypted group chats',
    long_description=long_description,
    long_description_content_type='text/markdown',
    package_dir={'': 'src'},
    packages=find_packages(where='src'),
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Topic :: Communications :: Chat',
        'Topic :: Security :: Cryptography',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Operating System :: OS Independent',
        'Environment :: Console',
    ],
    python_requires='>=3.8',
    install_requires=[
        'cryptography>=42.0.4',
        'rich>=13.7.0',
        'tomli>=2.0.1; python_version < "3.11"',
    ],
    extras_require={
        'test': [
            'pytest>=7.4.0',
            'pytest-asyncio>=0.21.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'safechat-server=safechat.server:main',
        ],
    },
)
