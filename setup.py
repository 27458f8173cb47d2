from setuptools import setup, find_packages

setup(
    name="appdeck-backend",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "sqlalchemy>=2.0.23",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "python-dotenv>=1.0.0",
        "cryptography>=41.0.7",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.3",
        ],
    },
    entry_points={
        "console_scripts": [
            "appdeck-sweep=appdeck.main:main",
        ],
    },
    python_requires=">=3.11",
)
