"""
Setup file for Grid Analytics package.
Allows installation in editable mode: pip install -e .
"""

from setuptools import setup, find_packages

setup(
    name="grid_analytics",
    version="0.1.0",
    description="Grid generation backfill and short-horizon pool price forecasting",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "pandas",
        "numpy",
        "pyarrow",
        "pyyaml",
        "python-dotenv",
        "scikit-learn",
        "requests",
        "urllib3",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
)
