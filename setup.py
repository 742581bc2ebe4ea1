"""
relmodel - Relational data modeling layer

Models, typed fields, declarative relations and derivable fields over pluggable storage adapters.
Nested relation paths are resolved with one storage round-trip per relation.
"""

from setuptools import setup, find_packages
import os

# Read README for long description
def read_long_description():
    readme_path = os.path.join(os.path.dirname(__file__), 'README.md')
    if os.path.exists(readme_path):
        with open(readme_path, 'r', encoding='utf-8') as f:
            return f.read()
    return ""

# Define optional dependencies
extras_require = {
    # Standard library engines (no extra install needed)
    'memory': [],
    'sqlite': [],

    # Test dependencies
    'test': [
        'pytest>=7.0',
    ],

    # Development dependencies
    'dev': [
        'mypy>=0.950',
        'build>=0.7.0',
        'twine>=4.0.0',
    ],
}

# Full development environment
extras_require['full'] = (
    extras_require['test'] +
    extras_require['dev']
)

setup(
    name="relmodel",
    version="0.1.0",
    author="go9sky",
    author_email="",
    description="Relational data modeling layer - typed fields, declarative relations, N+1-free eager loading",
    long_description=read_long_description(),
    long_description_content_type="text/markdown",
    url="https://github.com/go9sky/relmodel",
    packages=find_packages(exclude=['examples', 'tests']),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Database",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Typing :: Typed",
    ],
    python_requires=">=3.10",

    # Core dependencies (zero external dependencies, pure Python)
    install_requires=[],

    # Optional dependencies
    extras_require=extras_require,

    # Project metadata
    keywords="orm data-model relations eager-loading sqlite python relmodel",
    project_urls={
        "Homepage": "https://github.com/go9sky/relmodel",
        "Source": "https://github.com/go9sky/relmodel",
    },
)
