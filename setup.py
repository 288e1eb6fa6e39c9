from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="gfalook",
    version="0.1.0",
    author="gfalook developers",
    description="1D visualization of variation graphs: binned path views, similarity clustering and layouts",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=("tests", "tests.*")),
    python_requires=">=3.10",
    install_requires=[
        "scikit-learn",
        "numpy",
        "pandas",
        "pyarrow",
        "matplotlib",
        "click",
        "rich",
        "pydantic>=2.0",
        "pyyaml",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "gfalook=gfalook.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
        "Programming Language :: Python :: 3.10",
    ],
)
