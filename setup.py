# setup.py
from setuptools import setup, find_packages

setup(
    name="site_compare",
    version="0.1.0",
    description="Сравнение эталонного и нового развёртывания сайта обходом в двух браузерах",
    packages=find_packages(exclude=("tests", "tests.*")),
    install_requires=[
        "pydantic>=2.0",
        "PyYAML>=6.0",
        "beautifulsoup4>=4.12",
        "click>=8.1",
        "Jinja2>=3.1",
        "selenium>=4.10",
        "Pillow>=10.0",
        "numpy>=1.24",
    ],
    extras_require={
        "test": ["pytest>=7.4"],
    },
    entry_points={
        "console_scripts": ["site-compare=site_compare.cli:cli"],
    },
    python_requires=">=3.11",
)
