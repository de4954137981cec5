"""Setup script for the storefront checkout service."""

from setuptools import setup, find_packages

setup(
    name="storefront-checkout",
    version="1.0.0",
    description="Razorpay checkout sessions, webhook order fulfillment and order confirmation",
    author="ML Roadmap Bootcamp",
    python_requires=">=3.10",
    packages=find_packages(include=["storefront_checkout", "storefront_checkout.*"]),
    install_requires=[
        line.strip()
        for line in open("requirements.txt")
        if line.strip() and not line.startswith("#") and not line.startswith("git+")
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "aiosqlite>=0.19.0",
        ],
        "dev": [
            "black>=23.0.0",
            "isort>=5.12.0",
            "flake8>=6.0.0",
            "mypy>=1.4.0",
            "pytest-cov>=4.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "storefront-api=storefront_checkout.api.main:run",
            "storefront-stock-compensation=storefront_checkout.workers.stock_compensation_worker:main",
        ]
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Framework :: FastAPI",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
