import os
import sys
import hashlib

import pytest

TEST_DIR = os.path.abspath(os.path.dirname(__file__))
PROJ_DIR = os.path.dirname(TEST_DIR)
sys.path.insert(0, os.path.join(PROJ_DIR, 'git-notify'))

import git_notify


AUTHOR = 'A U Thor <author@example.com> 1704189600 +0100'
COMMITTER = 'C O Mitter <committer@example.com> 1704189600 +0100'
TAGGER = 'T A Gger <tagger@example.com> 1704276000 -0500'


def make_sha1(name):
    return hashlib.sha1(name.encode('utf-8')).hexdigest()


class FakeRepository(object):
    """An in-memory stand-in for GitRepository.

    Commits are identified by the SHA1 of their name.  The order in
    which they are created stands in for commit dates."""

    def __init__(self):
        self.order = []
        self.parents = {}
        self.types = {}
        self.targets = {}
        self.raw = {}
        self.refs = {}
        self.stats = {}
        self.patches = {}
        self.calls = []

    def commit(self, name, parents=(), message=None, ref=None):
        sha1 = make_sha1(name)
        self.order.append(sha1)
        self.parents[sha1] = list(parents)
        self.types[sha1] = 'commit'
        if message is None:
            message = 'Add %s\n\nThis commit adds %s.' % (name, name)
        header = ['tree %s' % (make_sha1('tree-' + name),)]
        header.extend('parent %s' % (p,) for p in parents)
        header.append('author %s' % (AUTHOR,))
        header.append('committer %s' % (COMMITTER,))
        self.raw[sha1] = '\n'.join(header) + '\n\n' + message
        self.stats[sha1] = ' %s.txt | 1 +\n 1 file changed, 1 insertion(+)' % (name,)
        self.patches[sha1] = (
            'diff --git a/%s.txt b/%s.txt\n'
            'new file mode 100644\n'
            '--- /dev/null\n'
            '+++ b/%s.txt\n'
            '@@ -0,0 +1 @@\n'
            '+%s' % (name, name, name, name)
            )
        if ref:
            self.refs[ref] = sha1
        return sha1

    def chain(self, names, parent=None, ref=None):
        """Create a line of commits and return their SHA1s, oldest first."""

        sha1s = []
        for name in names:
            parents = [parent] if parent else []
            parent = self.commit(name, parents)
            sha1s.append(parent)
        if ref:
            self.refs[ref] = parent
        return sha1s

    def tag(self, name, target, message='Release %(name)s\n\nFirst stable release.'):
        sha1 = make_sha1('tag-' + name)
        self.order.append(sha1)
        self.types[sha1] = 'tag'
        self.targets[sha1] = target
        self.raw[sha1] = (
            'object %s\ntype commit\ntag %s\ntagger %s\n\n' % (target, name, TAGGER)
            + message % {'name': name}
            )
        self.refs['refs/tags/' + name] = sha1
        return sha1

    def _reachable(self, tips):
        seen = set()
        todo = list(tips)
        while todo:
            sha1 = todo.pop()
            sha1 = self.targets.get(sha1, sha1)
            if sha1 in seen:
                continue
            seen.add(sha1)
            todo.extend(self.parents[sha1])
        return seen

    def get_repo_name(self):
        self.calls.append(('get_repo_name',))
        return 'fake'

    def list_refs(self):
        return [
            (sha1, self.types[sha1], name)
            for (name, sha1) in sorted(self.refs.items())
            ]

    def get_type(self, sha1):
        return self.types[sha1]

    def rev_list(self, include, exclude=(), no_merges=False, boundary=False):
        self.calls.append(('rev_list', list(include), list(exclude), no_merges, boundary))
        excluded = self._reachable(exclude)
        included = self._reachable(include) - excluded
        lines = [
            sha1 for sha1 in reversed(self.order)
            if sha1 in included and not (no_merges and len(self.parents[sha1]) > 1)
            ]
        if boundary:
            edge = set(
                parent
                for sha1 in included
                for parent in self.parents[sha1]
                if parent in excluded
                )
            lines.extend('-' + sha1 for sha1 in reversed(self.order) if sha1 in edge)
        return lines

    def get_object_info(self, sha1):
        return git_notify.ObjectInfo.parse(sha1, self.types[sha1], self.raw[sha1])

    def get_diff_stat(self, sha1):
        self.calls.append(('get_diff_stat', sha1))
        return self.stats[sha1]

    def get_diff_patch(self, sha1):
        self.calls.append(('get_diff_patch', sha1))
        return self.patches[sha1]

    def log(self, include, exclude=(), no_merges=False, stat=False):
        self.calls.append(('log', list(include), list(exclude), no_merges, stat))
        lines = []
        for sha1 in self.rev_list(include, exclude, no_merges=no_merges):
            info = self.get_object_info(sha1)
            lines.append('commit %s' % (sha1,))
            lines.append('Author: %s <%s>' % (
                info.get_identity('author').name, info.get_identity('author').email,
                ))
            lines.append('')
            lines.append('    %s' % (info.get_subject(),))
            lines.append('')
            if stat:
                lines.extend(self.stats[sha1].split('\n'))
                lines.append('')
        return lines


class RecordingMailer(git_notify.Mailer):
    def __init__(self):
        self.sent = []

    def send(self, recipient, notice):
        self.sent.append((recipient, notice))


class FakeConfig(git_notify.Config):
    """A Config whose values come from a dict instead of "git config".

    Multi-valued keys are given as lists."""

    def __init__(self, values=None):
        git_notify.Config.__init__(self, 'notify')
        self.values = values or {}

    def get(self, name, default=None):
        value = self.values.get(name, default)
        if isinstance(value, list):
            return value[-1]
        return value

    def get_bool(self, name, default=None):
        if name not in self.values:
            return default
        return self.values[name] in (True, 'true', 'yes', '1')

    def get_all(self, name, default=None):
        if name not in self.values:
            return default
        value = self.values[name]
        if isinstance(value, list):
            return value
        return [value]


def make_settings(**kw):
    values = dict(
        recipient='commits@example.com',
        sender=None,
        mailer=git_notify.DEFAULT_MAILER,
        max_notices=100,
        repo_name='project',
        max_diff=10000,
        max_stat=10000,
        browse_url=None,
        include=(),
        exclude=(),
        no_merges=False,
        debug=True,
        )
    values.update(kw)
    return git_notify.Settings(**values)


@pytest.fixture()
def repo():
    return FakeRepository()


@pytest.fixture()
def mailer():
    return RecordingMailer()
