from __future__ import annotations

from typing import Any

from sqla_eagerloads import JoinPlan, Model, build_associations, split_row
from sqla_eagerloads.graph import _make_unique as make_unique

from ..models import Album, Artist, Note, Tag, Track


def _labelled(alias: str, **values: Any) -> dict[str, Any]:
    return {f"{alias}__{name}": value for name, value in values.items()}


def _null(alias: str, model: type[Model]) -> dict[str, Any]:
    return {f"{alias}__{column.name}": None for column in model.__table__.c}


def _artist(id: int, alias: str = "artists") -> dict[str, Any]:
    return _labelled(alias, id=id, name=f"artist {id}", active=True)


def _album(id: int, artist_id: int | None = None, alias: str = "albums") -> dict[str, Any]:
    return _labelled(alias, id=id, name=f"album {id}", artist_id=artist_id, genre_id=None, min_rating=0)


def _track(id: int, album_id: int, alias: str = "tracks") -> dict[str, Any]:
    return _labelled(alias, id=id, name=f"track {id}", number=id, album_id=album_id)


def _tag(id: int, alias: str = "tags") -> dict[str, Any]:
    return _labelled(alias, id=id, name=f"tag {id}")


def _plan(ds: Any) -> JoinPlan:
    assert ds.graph is not None
    return ds.graph


def _build(rows: list[dict[str, Any]], plan: JoinPlan) -> list[Model]:
    return build_associations([split_row(row, plan) for row in rows], plan)


class TestSplitRow:
    def test_splits_by_alias(self) -> None:
        plan = _plan(Album.dataset().eager_graph("artist"))
        graph = split_row({**_album(1, artist_id=7), **_artist(7, alias="artist")}, plan)

        assert set(graph) == {"albums", "artist"}
        assert graph["albums"] == Album(id=1, name="album 1", artist_id=7, genre_id=None, min_rating=0)
        assert graph["artist"] == Artist(id=7, name="artist 7", active=True)

    def test_all_null_alias_is_absent(self) -> None:
        plan = _plan(Album.dataset().eager_graph("artist"))
        graph = split_row({**_album(1), **_null("artist", Artist)}, plan)

        assert graph["artist"] is None

    def test_missing_labels_are_absent(self) -> None:
        plan = _plan(Album.dataset().eager_graph("artist"))

        assert split_row(_album(1), plan)["artist"] is None


class TestOneToManyReconstruction:
    def test_rows_collapse_into_one_root(self) -> None:
        plan = _plan(Album.dataset().eager_graph("tracks"))
        rows = [{**_album(1), **_track(i, album_id=1)} for i in (1, 2, 3)]
        albums = _build(rows, plan)

        assert len(albums) == 1
        assert [track.id for track in albums[0].tracks] == [1, 2, 3]

    def test_reciprocal_points_at_canonical_parent(self) -> None:
        plan = _plan(Album.dataset().eager_graph("tracks"))
        rows = [{**_album(1), **_track(i, album_id=1)} for i in (1, 2)]
        (album,) = _build(rows, plan)

        assert all(track.album is album for track in album.tracks)

    def test_roots_in_first_appearance_order(self) -> None:
        plan = _plan(Album.dataset().eager_graph("tracks"))
        rows = [
            {**_album(2), **_track(5, album_id=2)},
            {**_album(1), **_track(1, album_id=1)},
            {**_album(2), **_track(6, album_id=2)},
        ]
        albums = _build(rows, plan)

        assert [album.id for album in albums] == [2, 1]
        assert [track.id for track in albums[0].tracks] == [5, 6]

    def test_absent_child_gives_empty_loaded_list(self) -> None:
        plan = _plan(Album.dataset().eager_graph("tracks"))
        (album,) = _build([{**_album(1), **_null("tracks", Track)}], plan)

        assert album.is_loaded("tracks")
        assert album.tracks == []

    def test_repeated_row_attaches_once(self) -> None:
        plan = _plan(Album.dataset().eager_graph("tracks"))
        row = {**_album(1), **_track(1, album_id=1)}
        (album,) = _build([row, dict(row)], plan)

        assert len(album.tracks) == 1


class TestManyToOneReconstruction:
    def test_shared_parent_is_one_instance(self) -> None:
        plan = _plan(Track.dataset().eager_graph("album"))
        rows = [{**_track(i, album_id=1, alias="tracks"), **_album(1, alias="album")} for i in (1, 2)]
        first, second = _build(rows, plan)

        assert first.album is second.album

    def test_absent_parent_is_none(self) -> None:
        plan = _plan(Album.dataset().eager_graph("artist"))
        (album,) = _build([{**_album(4), **_null("artist", Artist)}], plan)

        assert album.is_loaded("artist")
        assert album.artist is None


class TestCartesianDedup:
    def test_two_to_many_aliases(self) -> None:
        plan = _plan(Album.dataset().eager_graph("tracks", "tags"))
        rows = [
            {**_album(1), **_track(t, album_id=1), **_tag(g)}
            for t in (1, 2, 3)
            for g in (1, 2)
        ]
        (album,) = _build(rows, plan)

        assert [track.id for track in album.tracks] == [1, 2, 3]
        assert [tag.id for tag in album.tags] == [1, 2]

    def test_nested_to_many(self) -> None:
        plan = _plan(Artist.dataset().eager_graph({"albums": ["tracks", "tags"]}))
        rows = [
            {**_artist(1), **_album(a, artist_id=1), **_track(t, album_id=a), **_tag(g)}
            for a, t in ((1, 1), (1, 2), (2, 3))
            for g in (1, 2)
        ]
        (artist,) = _build(rows, plan)
        first, second = artist.albums

        assert [track.id for track in first.tracks] == [1, 2]
        assert [track.id for track in second.tracks] == [3]
        assert [tag.id for tag in first.tags] == [1, 2]
        # Tag rows are canonical per alias, shared across albums.
        assert first.tags[0] is second.tags[0]

    def test_chained_plan(self) -> None:
        ds = Artist.dataset().eager_graph({"albums": "tracks"}).eager_graph({"albums": "tags"})
        plan = _plan(ds)
        rows = [
            {**_artist(1), **_album(a, artist_id=1), **_track(t, album_id=a), **_tag(g)}
            for a, t in ((1, 1), (1, 2), (2, 3))
            for g in (1, 2)
        ]
        (artist,) = _build(rows, plan)

        assert [album.id for album in artist.albums] == [1, 2]
        assert [track.id for track in artist.albums[0].tracks] == [1, 2]
        assert [tag.id for tag in artist.albums[1].tags] == [1, 2]

    def test_equal_keys_collapse(self) -> None:
        plan = _plan(Album.dataset().eager_graph("tracks", "tags"))
        album = Album(id=1)
        first = Track(id=1, album_id=1)
        album.set_association("tracks", [first, Track(id=1, album_id=1), Track(id=2, album_id=1)])
        album.set_association("tags", [])
        make_unique([album], plan.dependency_tree(), plan)

        assert [track.id for track in album.tracks] == [1, 2]
        assert album.tracks[0] is first


class TestNestedReconstruction:
    def test_three_levels(self) -> None:
        plan = _plan(Artist.dataset().eager_graph({"albums": "tracks"}))
        rows = [
            {**_artist(1), **_album(1, artist_id=1), **_track(1, album_id=1)},
            {**_artist(1), **_album(1, artist_id=1), **_track(2, album_id=1)},
            {**_artist(1), **_album(2, artist_id=1), **_null("tracks", Track)},
            {**_artist(2), **_null("albums", Album), **_null("tracks", Track)},
        ]
        first, second = _build(rows, plan)

        assert [album.id for album in first.albums] == [1, 2]
        assert [track.id for track in first.albums[0].tracks] == [1, 2]
        assert first.albums[1].tracks == []
        assert first.albums[0].artist is first
        assert first.albums[0].tracks[0].album is first.albums[0]
        assert second.albums == []

    def test_reconstruction_is_idempotent(self) -> None:
        plan = _plan(Artist.dataset().eager_graph({"albums": "tracks"}, "albums_with_tracks"))
        rows = [
            {
                **_artist(1),
                **_album(a, artist_id=1),
                **_track(t, album_id=a),
                **_album(a, artist_id=1, alias="albums_with_tracks"),
            }
            for a, t in ((1, 1), (1, 2), (2, 3))
        ]

        def shape(artists: list[Model]) -> list[Any]:
            return [
                (
                    artist.id,
                    [(album.id, [track.id for track in album.tracks]) for album in artist.albums],
                    [album.id for album in artist.albums_with_tracks],
                )
                for artist in artists
            ]

        assert shape(_build(rows, plan)) == shape(_build(rows, plan))
        assert shape(_build(rows, plan)) == [(1, [(1, [1, 2]), (2, [3])], [1, 2])]


class TestKeylessRecords:
    def test_dedup_by_values(self) -> None:
        plan = _plan(Album.dataset().eager_graph("notes"))
        rows = [
            {**_album(1), **_labelled("notes", album_id=1, text="remastered")},
            {**_album(1), **_labelled("notes", album_id=1, text="remastered")},
            {**_album(1), **_labelled("notes", album_id=1, text="mono")},
        ]
        (album,) = _build(rows, plan)

        assert [note.text for note in album.notes] == ["remastered", "mono"]
        assert all(isinstance(note, Note) for note in album.notes)


def test_tag_model_has_no_reciprocal_for_many_to_many() -> None:
    plan = _plan(Album.dataset().eager_graph("tags"))
    (album,) = _build([{**_album(1), **_tag(1)}], plan)

    assert album.tags == [Tag(id=1, name="tag 1")]
    assert not album.tags[0].is_loaded("albums")
