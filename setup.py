from setuptools import setup

version = '0.1'

with open("README.md", "r", encoding="utf-8") as f:
    long_descr = f.read()

setup(
    name='onkyobridge',
    packages=['onkyobridge'],
    py_modules=['main'],
    version=version,
    license='Apache 2.0',
    description='Volume and source control bridge for Onkyo/Pioneer receivers',
    long_description=long_descr,
    long_description_content_type='text/markdown',
    author='onkyobridge contributors',
    author_email='onkyobridge@example.com',
    url='https://github.com/onkyobridge/onkyobridge',
    download_url=f'https://github.com/onkyobridge/onkyobridge/archive/{version}.tar.gz',
    keywords=['Onkyo', 'Pioneer', 'eISCP', 'AVR', 'volume control'],
    python_requires='>=3.10',
    install_requires=[
        "voluptuous>=0.13.1",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": ["onkyobridge=main:main"],
    },
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Topic :: Multimedia :: Sound/Audio',
        'License :: OSI Approved :: Apache Software License',
        'Programming Language :: Python :: 3.10'
    ],
)
