from setuptools import find_packages, setup

setup(
    name="jenkins-job-cli",
    version="0.1.0",
    packages=find_packages(
        include=[
            "jj_common",
            "jj_common.*",
            "jj_controller",
            "jj_controller.*",
            "jj_client",
            "jj_client.*",
        ]
    ),
    install_requires=[
        "requests>=2.31.0",
        "click>=8.1.0",
        "rich>=13.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-xdist>=3.3.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "jj=jj_client.cli:main",
        ],
    },
    python_requires=">=3.11",
)
