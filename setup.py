from setuptools import setup, find_packages
import os

here = os.path.abspath(os.path.dirname(__file__))
readme = os.path.join(here, "README.md")
long_description = "Batch HandBrake transcoding with sample-based quality search"
if os.path.exists(readme):
    with open(readme, encoding="utf-8") as f:
        long_description = f.read()

setup(
    name="hb-transcode",
    version="1.0.0",
    description="Batch HandBrake transcoding with sample-based quality search",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["hb_transcode", "hb_transcode.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Multimedia :: Video :: Conversion",
    ],
    python_requires=">=3.8",
    install_requires=[
        "tqdm>=4.0.0",
        "psutil>=5.0.0",  # Stale lock detection
    ],
    extras_require={
        "dev": [
            "pytest",
            "black",
            "flake8",
        ],
    },
    entry_points={
        "console_scripts": [
            "hb-transcode=hb_transcode.cli:main_transcode",
        ],
    },
    include_package_data=True,
    zip_safe=False,
)
