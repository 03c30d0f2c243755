from __future__ import annotations

from setuptools import find_namespace_packages, setup

setup(
    name="elastic-projection",
    version="0.1.0",
    description="Search for map projections by relaxing an elastic sheet over the globe",
    python_requires=">=3.10",
    packages=find_namespace_packages(
        include=[
            "core*",
            "geometry*",
            "modules*",
            "parameters*",
            "runtime*",
            "visualization*",
        ]
    ),
    py_modules=["main"],
    install_requires=[
        "numpy",
        "PyYAML",
        "matplotlib",
    ],
    extras_require={"test": ["pytest"]},
    entry_points={"console_scripts": ["elastic-projection=main:main"]},
)
