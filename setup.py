from setuptools import find_packages, setup

setup(
    name="leviathan-build-controller",
    version="0.1.0",
    packages=find_packages(
        include=[
            "lb_common",
            "lb_common.*",
            "lb_cluster",
            "lb_cluster.*",
            "lb_controller",
            "lb_controller.*",
            "lb_admin",
            "lb_admin.*",
        ]
    ),
    install_requires=[
        "kubernetes>=29.0.0",
        "fastapi>=0.104.0",
        "uvicorn>=0.24.0",
        "aiosqlite>=0.19.0",
        "click>=8.1.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-xdist>=3.3.0",
            "httpx>=0.25.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "lb-controller=lb_controller.__main__:main",
            "lbctl=lb_admin.cli:cli",
        ],
    },
    python_requires=">=3.11",
)
