from __future__ import absolute_import, print_function

from .cli import main

if __name__ == "__main__":
    main()
