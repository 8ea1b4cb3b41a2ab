# setup.py

from setuptools import setup, find_packages

VERSION = "0.1.0"
DESCRIPTION = "scrnaseq_qc: per-cell QC metrics and threshold filtering for scRNA-seq count matrices."
# Attempt to read the long description from README.md
try:
    with open("README.md", "r", encoding="utf-8") as fh:
        LONG_DESCRIPTION = fh.read()
except FileNotFoundError:
    LONG_DESCRIPTION = DESCRIPTION

setup(
    name="scrnaseq_qc",
    version=VERSION,
    description=DESCRIPTION,
    long_description=LONG_DESCRIPTION,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests*", "docs*", "examples*", "output_*"]),
    install_requires=[
        "scanpy>=1.9",
        "anndata>=0.8",
        "pandas>=1.5",
        "numpy>=1.21",
        "scipy>=1.8",
        "matplotlib>=3.5",
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.10",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
    ],
    entry_points={
        'console_scripts': [
            'scrnaseq-qc=scrnaseq_qc.cli:main',
        ],
    }
)
