"""Standalone runtime for the next-gen routes controller.

Wires a file based manifest watcher, the route controller and a file
writing configuration agent together behind a small CLI.
"""
