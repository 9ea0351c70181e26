"""
Subtitle Storyboard Pipeline - turn a subtitle track into image prompts and images.

A pipeline for:
- Parsing and writing SRT subtitle tracks
- Merging short subtitle lines per content section with configurable rules
- Generating one image prompt per subtitle line with GPT in chunked batches
- Generating one image per prompt across a rotating pool of bearer tokens
"""

__version__ = "0.1.0"
