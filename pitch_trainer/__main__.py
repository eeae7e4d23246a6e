"""Entry point wrapper for ``python -m pitch_trainer``.

When the package is executed as a module the code here simply forwards
execution to :func:`pitch_trainer.main` so the behaviour is identical to
the installed ``pitch-trainer`` console script.

Example
-------
Play the memory game in the terminal without sound::

    python -m pitch_trainer --game memory_game --silent
"""

from . import main

if __name__ == "__main__":
    main()
