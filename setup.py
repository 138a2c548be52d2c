from setuptools import setup, find_packages

setup(
    name="active-active-failover",
    version="0.1.0",
    packages=find_packages(include=["src", "src.*"]),
    install_requires=[
        "aiohttp>=3.8.0",
        "boto3>=1.26.0",
        "botocore>=1.29.0",
        "prometheus_client>=0.16.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    python_requires=">=3.8",
)
