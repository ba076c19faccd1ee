"""
Minting of identifiers for new repository objects.

Identifiers are Noids (Nice Opaque Identifiers) generated from a template mask (see
:py:class:`NoidMinter`).  The object store never mints; the upload ingestor and the web layer ask
a minter for an identifier before creating an object.
"""
import re, random, threading, logging
from collections.abc import Mapping

import pynoid
from pynoid import __checkdigit as checkdigit

from .. import StateException
from ..config import ConfigurationException
from .base import ObjectStore, sys

DEF_TEMPLATE = "reeddeeddk"
DEF_MAX_TRIES = 10

_mask_re = re.compile(r"^[rsz]?[de]+k?$")

class NoidMinter(object):
    """
    a minter of Noid identifiers.  The template is a mask optionally preceded by a prefix and a
    ``.`` (e.g. ``ss.reeddeeddk``).  The mask starts with a mint order indicator--``r`` (random),
    ``s`` (sequential), or ``z`` (sequential, expanding without limit)--followed by ``d`` (digit)
    and ``e`` (extended digit) characters; a trailing ``k`` adds a check character.

    If a store is provided, each minted identifier is checked against it, and identifiers already
    in use are skipped.

    This class recognizes the following configuration parameters:

    ``template``
        the Noid template to mint with (default: ``reeddeeddk``)
    ``sequence_start``
        (int) the first sequence number to use with sequential templates (default: 0)
    ``max_tries``
        (int) the number of identifiers to try before giving up when minted identifiers collide
        with existing ones (default: 10)
    """

    def __init__(self, config: Mapping = None, store: ObjectStore = None, log: logging.Logger = None):
        if config is None:
            config = {}
        self.cfg = config
        self.store = store
        if not log:
            log = sys.getSysLogger().getChild("minter")
        self.log = log

        template = self.cfg.get('template', DEF_TEMPLATE)
        if '.' in template:
            self.prefix, self.mask = template.rsplit('.', 1)
        else:
            self.prefix, self.mask = '', template
        if not _mask_re.match(self.mask):
            raise ConfigurationException("minter: Not a legal Noid template: "+template)

        self.order = self.mask[0] if self.mask[0] in "rsz" else 's'
        self.digits = self.mask.lstrip("rsz").rstrip('k')
        self.with_check = self.mask.endswith('k')

        seqstart = self.cfg.get('sequence_start', 0)
        if not isinstance(seqstart, int):
            raise ConfigurationException("sequence_start: not an int: "+str(seqstart))
        self._next = seqstart
        self.max_tries = self.cfg.get('max_tries', DEF_MAX_TRIES)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        """
        the number of distinct identifiers this minter can produce (or -1 if it is unlimited)
        """
        if self.order == 'z':
            return -1
        out = 1
        for c in self.digits:
            out *= len(pynoid.XDIGIT) if c == 'e' else len(pynoid.DIGIT)
        return out

    def _n2xdig(self, n: int) -> str:
        req = n
        out = []
        for c in reversed(self.digits):
            alpha = pynoid.XDIGIT if c == 'e' else pynoid.DIGIT
            n, value = divmod(n, len(alpha))
            out.append(alpha[value])

        if self.order == 'z':
            alpha = pynoid.XDIGIT if self.digits[0] == 'e' else pynoid.DIGIT
            while n > 0:
                n, value = divmod(n, len(alpha))
                out.append(alpha[value])

        if n > 0:
            raise StateException("Noid namespace exhausted (counter = %d)" % req)
        return ''.join(reversed(out))

    def format(self, n: int) -> str:
        """
        return the identifier corresponding to the given sequence number
        """
        out = self.prefix + ('.' if self.prefix else '') + self._n2xdig(n)
        if self.with_check:
            out += checkdigit(out)
        return out

    def _next_n(self) -> int:
        if self.order == 'r':
            return random.randrange(self.capacity)
        out = self._next
        self._next += 1
        return out

    def issued(self, id: str) -> bool:
        return self.store is not None and self.store.exists(id)

    def mint(self) -> str:
        """
        return a new identifier that is not in use in the store
        :raises StateException:  if a free identifier could not be found
        """
        with self._lock:
            for i in range(self.max_tries):
                out = self.format(self._next_n())
                if not self.issued(out):
                    return out
                self.log.debug("minted identifier %s already in use; retrying", out)
        raise StateException("Unable to mint an unused identifier after %d tries" % self.max_tries)

    def validate(self, id: str) -> bool:
        """
        return True if the given identifier's check character is correct.  False is returned if
        this minter does not add check characters.
        """
        if not self.with_check or not id:
            return False
        return checkdigit(id[:-1]) == id[-1]
