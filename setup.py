"""Setup script for SpeedWatch package."""

from setuptools import find_packages, setup

setup(
    name='speedwatch',
    version='0.1.0',
    author='SpeedWatch Team',
    author_email='example@example.com',
    description='Average-speed enforcement simulation over a road graph with checkpoint timing',
    long_description=open('README.md', encoding='utf-8').read(),
    long_description_content_type='text/markdown',
    url='https://github.com/example/speedwatch',
    packages=find_packages(exclude=['tests', 'tests.*']),
    include_package_data=True,
    package_data={
        'speedwatch.config': ['*.yaml'],
        'speedwatch.data': ['*.json'],
    },
    classifiers=[
        'Programming Language :: Python :: 3',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.8',
    install_requires=[
        'numpy',
        'pandas',
        'PyYAML',
    ],
    extras_require={
        'dev': [
            'pytest',
            'pytest-asyncio',
            'flake8',
            'black',
        ],
    },
)
