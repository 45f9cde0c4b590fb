"""Setup script for the Infinizoom package."""
from setuptools import setup, find_packages

if __name__ == "__main__":
    setup(
        name="infinizoom",
        version="0.1.0",
        description="Infinitely wrapping panorama viewer with debounced AI region enhancement",
        package_dir={"": "src"},
        packages=find_packages(where="src"),
        install_requires=[
            "numpy>=1.23",
            "pyzmq>=25.1.1",
            "pydantic>=2.5.0",
            "toml>=0.10.2",
            "python-dotenv>=1.0.0",
            "aiohttp>=3.9.0",
            "Pillow>=9.5",
            "opencv-python>=4.8",
        ],
        extras_require={
            'dev': [
                "pytest>=7.4",
                "pytest-asyncio>=0.23",
                "pytest-mock>=3.12",
                "pytest-cov>=4.1",
                "mypy>=1.7",
                "ruff>=0.1.6",
            ],
            'display': [
                "pyglet>=2.0",
            ],
        },
        entry_points={
            "console_scripts": [
                "infinizoom=infinizoom.cli:main",
            ],
        },
        python_requires=">=3.11",
    )
