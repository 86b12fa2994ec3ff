import re

from setuptools import setup


def get_property(prop):
    result = re.search(
        rf'{prop}\s*=\s*[\'"]([^\'"]*)[\'"]',
        open("labrecipe/__init__.py").read(),
    )
    return result.group(1)


with open("README.md", encoding="utf-8") as infile:
    long_description = infile.read()


setup(
    name="labrecipe",
    version=get_property("__version__"),
    description="A versioned pipeline orchestrator and artifact cache for data kickstart recipes",
    keywords=["pipeline", "workflow", "cache", "versioning"],
    long_description_content_type="text/markdown",
    long_description=long_description,
    python_requires=">=3.9",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: POSIX",
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Science/Research",
    ],
    packages=["labrecipe"],
    entry_points={
        "console_scripts": [
            "labrecipe=labrecipe.cli:main",
        ]
    },
    install_requires=[
        "graphviz",
        "psutil",
        "rich",
        "argcomplete",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-mock",
        ]
    },
)
