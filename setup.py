"""Setup script for options stream analytics."""

from setuptools import setup, find_packages

setup(
    name="options-stream-analytics",
    version="1.0.0",
    description="Live options analytics: implied vol, higher-order Greeks, smiles and dislocation alerts",
    author="Your Name",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["analyzer", "main"],
    python_requires=">=3.9",
    install_requires=[
        "yfinance>=0.2.40",
        "pandas>=2.0.0",
        "numpy>=1.24.0",
        "scipy>=1.11.0",
        "plotly>=5.18.0",
        "rich>=13.7.0",
        "pydantic>=2.5.0",
    ],
    extras_require={
        "tests": ["pytest>=7.4.0", "py_vollib>=1.0.1"],
    },
    entry_points={
        "console_scripts": [
            "options-stream=main:main",
        ],
    },
)
