"""Setup configuration for the Timecord Discord bot."""

from setuptools import setup, find_packages

setup(
    name="timecord",
    version="0.1.0",
    description="A Discord bot for timed quarantines, polls and giveaways",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.10",
    install_requires=[
        "discord.py>=2.4",
        "aiosqlite>=0.20",
        "PyYAML>=6.0",
        "python-dotenv>=1.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "timecord=timecord.main:main",
        ],
    },
)
